from __future__ import annotations

import typing
from pathlib import Path

import click
from rich import console as rich_console
from rich import syntax as rich_syntax

from unipatch import project as unipatch_project
from unipatch.patch import (
    apply_diff_to_file,
    apply_patch_set,
    check_unified_diff,
    create_diff,
)
from unipatch.patch import summary as patch_summary
from unipatch.tools import base as tools_base

console = rich_console.Console(highlight=False)
err_console = rich_console.Console(stderr=True, highlight=False)


def project_option(fn: typing.Callable) -> typing.Callable:
    return click.option(
        "--project",
        "project_dir",
        type=click.Path(file_okay=False, path_type=Path),
        default=".",
        show_default=True,
        help="Unity project root (or any folder below it).",
    )(fn)


def _read_text(path: Path) -> str:
    with path.open("r", encoding="utf-8", newline="") as fh:
        return fh.read()


def _read_diff(source: str) -> str:
    # Newlines are kept as written so CRLF diffs still match CRLF files
    if source == "-":
        return click.get_text_stream("stdin").read()
    return _read_text(Path(source))


def _fail(text: str) -> typing.NoReturn:
    err_console.print(text, style="red", markup=False, soft_wrap=True)
    raise SystemExit(1)


def _fail_with(e: Exception) -> typing.NoReturn:
    _fail(tools_base.error_response(e).text or str(e))


def _echo(text: str, *, style: typing.Optional[str] = None) -> None:
    console.print(text, style=style, markup=False, soft_wrap=True)


@click.group()
@click.version_option(package_name="unipatch")
def main() -> None:
    """Patch C# scripts and shaders in a Unity project with unified diffs."""


@main.command("diff")
@click.argument("original", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("modified", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-U", "--unified", "context_lines", type=click.IntRange(min=0), default=None,
              help="Lines of context around each change.")
@project_option
def diff_cmd(original: Path, modified: Path, context_lines: typing.Optional[int], project_dir: Path) -> None:
    """Print the unified diff from ORIGINAL to MODIFIED."""
    prj = unipatch_project.init_project(project_dir)
    if context_lines is None:
        context_lines = prj.settings.diff.context_lines
    try:
        text = create_diff(
            _read_text(original),
            _read_text(modified),
            context_lines,
            from_file=str(original),
            to_file=str(modified),
        )
    except tools_base.TOOL_ERRORS as e:
        _fail_with(e)
    if not text:
        return
    if console.is_terminal:
        console.print(rich_syntax.Syntax(text, "diff", theme="ansi_dark", word_wrap=False))
    else:
        click.echo(text, nl=False)


@main.command("apply")
@click.argument("target")
@click.argument("diff_file", metavar="DIFF", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@click.option("--ignore-whitespace", is_flag=True, help="Match context ignoring whitespace.")
@click.option("--fuzzy", type=click.IntRange(0, 100), default=None,
              help="Accept approximate context at this similarity percent.")
@click.option("--backup", is_flag=True, help="Keep a copy of TARGET before writing.")
@project_option
def apply_cmd(
    target: str,
    diff_file: str,
    dry_run: bool,
    ignore_whitespace: bool,
    fuzzy: typing.Optional[int],
    backup: bool,
    project_dir: Path,
) -> None:
    """Apply the unified diff in DIFF ('-' for stdin) to TARGET."""
    prj = unipatch_project.init_project(project_dir)
    settings = prj.settings
    options = settings.patch_options(
        dry_run=dry_run,
        ignore_whitespace=ignore_whitespace or None,
        fuzzy=fuzzy,
    )
    try:
        result = apply_diff_to_file(
            target,
            _read_diff(diff_file),
            prj.file_ops(),
            options,
            backup=backup or settings.workspace.create_backup,
            backup_suffix=settings.workspace.backup_suffix,
            strict=settings.diff.strict,
        )
    except tools_base.TOOL_ERRORS as e:
        _fail_with(e)
    _echo(patch_summary.format_patch_result(target, result), style="green" if result.changed else None)


@main.command("check")
@click.argument("target")
@click.argument("diff_file", metavar="DIFF", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@project_option
def check_cmd(target: str, diff_file: str, project_dir: Path) -> None:
    """Report whether DIFF applies to TARGET. Nothing is written."""
    prj = unipatch_project.init_project(project_dir)
    ops = prj.file_ops()
    try:
        text = ops.open(target) if ops.exists(target) else ""
        report = check_unified_diff(
            text,
            _read_diff(diff_file),
            prj.settings.patch_options(),
            strict=prj.settings.diff.strict,
        )
    except tools_base.TOOL_ERRORS as e:
        _fail_with(e)
    summary = patch_summary.format_validation_report(target, report)
    if not report.applicable:
        _fail(summary)
    _echo(summary, style="green")


@main.command("patch")
@click.argument("patch_file", metavar="PATCH", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@click.option("--no-atomic", is_flag=True, help="Write the files that apply even if others fail.")
@click.option("--continue-on-error", is_flag=True, help="Keep going after a file fails (with --no-atomic).")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing.")
@project_option
def patch_cmd(
    patch_file: str,
    no_atomic: bool,
    continue_on_error: bool,
    dry_run: bool,
    project_dir: Path,
) -> None:
    """Apply a multi-file unified diff to the project."""
    prj = unipatch_project.init_project(project_dir)
    settings = prj.settings
    options = settings.patch_options(dry_run=dry_run)
    try:
        result = apply_patch_set(
            _read_diff(patch_file),
            prj.file_ops(),
            options,
            atomic=not no_atomic,
            continue_on_error=continue_on_error,
            backup=settings.workspace.create_backup,
            backup_suffix=settings.workspace.backup_suffix,
            strict=settings.diff.strict,
        )
    except tools_base.TOOL_ERRORS as e:
        _fail_with(e)
    summary = patch_summary.format_patch_set(result, dry_run=dry_run)
    if not result.success:
        _fail(summary)
    _echo(summary, style="green")


if __name__ == "__main__":
    main()
