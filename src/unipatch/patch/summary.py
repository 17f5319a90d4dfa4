from __future__ import annotations

from typing import List, Optional

from .errors import DiffError
from .models import (
    FileApplyStatus,
    PatchError,
    PatchResult,
    PatchSetResult,
    ValidationReport,
)


def _format_error_line(e: PatchError) -> List[str]:
    loc = ""
    if e.filename and e.line is not None:
        loc = f"{e.filename}:{e.line}: "
    elif e.filename:
        loc = f"{e.filename}: "
    lines = [f"* {loc}{e.msg}"]
    lines.extend(f"  {d}" for d in e.details)
    if e.hint:
        lines.append(f"  Hint: {e.hint}")
    return lines


def format_error(e: DiffError) -> str:
    lines = ["Patch application failed. No changes were applied.", "Errors:"]
    lines.extend(_format_error_line(e.to_report()))
    return "\n".join(lines)


def _counts(result: PatchResult) -> str:
    return (
        f"+{result.lines_added} -{result.lines_removed} lines "
        f"(net {result.net_delta:+d})"
    )


def format_patch_result(path: str, result: PatchResult, *, show_preview: Optional[bool] = None) -> str:
    """
    Summary of one file's edit. Dry runs include the per-edit excerpts unless
    show_preview is False.
    """
    if show_preview is None:
        show_preview = result.dry_run
    lines: List[str] = []
    if result.dry_run:
        if result.changed:
            lines.append(f"Dry run: {path} would change, {_counts(result)}. Nothing was written.")
        else:
            lines.append(f"Dry run: {path} would not change.")
    elif result.changed:
        lines.append(f"Updated {path}: {_counts(result)}.")
    else:
        lines.append(f"No changes to {path}.")

    for o in result.outcomes:
        where = f"lines {o.start_line}-{o.end_line}"
        if o.end_line is not None and o.start_line is not None and o.end_line < o.start_line:
            where = f"insert before line {o.start_line}"
        extra = ""
        if o.offset:
            extra += f", offset {o.offset:+d}"
        if o.fuzzy:
            extra += ", approximate match"
        lines.append(f"* #{o.index + 1}: {where} (+{o.lines_added} -{o.lines_removed}{extra})")
        if show_preview and o.preview:
            lines.append(o.preview)

    if result.warnings:
        lines.append("Warnings:")
        for w in result.warnings:
            lines.append(f"* {w}")
    return "\n".join(lines)


def format_validation_report(path: str, report: ValidationReport) -> str:
    if report.applicable:
        lines = [f"Diff is valid and applies cleanly to {path}."]
    elif not report.valid:
        lines = ["Diff is malformed."]
    else:
        lines = [f"Diff is valid but does not apply to {path}."]

    if report.errors:
        lines.append("Errors:")
        lines.extend(f"* {e}" for e in report.errors)
    if report.conflicts:
        lines.append("Conflicts:")
        for c in report.conflicts:
            lines.append(f"* hunk #{c.hunk_index + 1} (line {c.line}): {c.description}")
            lines.extend(f"  {d}" for d in c.details)
            if c.hint:
                lines.append(f"  Hint: {c.hint}")
    if report.warnings:
        lines.append("Warnings:")
        lines.extend(f"* {w}" for w in report.warnings)
    return "\n".join(lines)


def _section(lines: List[str], title: str, paths: List[str]) -> None:
    if not paths:
        return
    lines.append(title)
    for p in paths:
        lines.append(f"* {p}")


def format_patch_set(result: PatchSetResult, *, dry_run: bool = False) -> str:
    """Per-file summary of a multi-file patch, errors last."""
    def by_status(status: FileApplyStatus) -> List[str]:
        return sorted(f.path for f in result.files if f.status == status)

    created = by_status(FileApplyStatus.Create)
    updated = by_status(FileApplyStatus.Update)
    deleted = by_status(FileApplyStatus.Delete)
    unchanged = by_status(FileApplyStatus.Unchanged)
    errors = [f.error for f in result.files if f.error is not None]

    lines: List[str] = []
    if result.success:
        lines.append("Dry run: patch applies cleanly." if dry_run else "Applied patch successfully.")
        _section(lines, "Would add files:" if dry_run else "Added files:", created)
        _section(lines, "Would update files:" if dry_run else "Updated files:", updated)
        _section(lines, "Would delete files:" if dry_run else "Deleted files:", deleted)
        _section(lines, "Unchanged files:", unchanged)
        return "\n".join(lines)

    if not result.written or result.rolled_back:
        lines.append("Patch application failed. No changes were applied.")
        if result.rolled_back:
            lines.append("Files restored after a failed write:")
            for p in result.rolled_back:
                lines.append(f"* {p}")
    else:
        lines.append("Patch application completed with errors. Summary:")
        _section(lines, "Written files:", sorted(result.written))

    lines.append("Please regenerate the diff for these files:")
    for f in result.failed:
        lines.append(f"* {f.path}")
    lines.append("Errors:")
    for e in errors:
        lines.extend(_format_error_line(e))
    return "\n".join(lines)
