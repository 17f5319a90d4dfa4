from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from unipatch.logger import logger

from .errors import DiffError, HunkMismatchError, MalformedDiffError, OverlappingPatchError
from .locator import locate, locate_hunk, validate_context
from .models import (
    ApplyOptions,
    FileDiff,
    Hunk,
    HunkConflict,
    LineSpan,
    LineTag,
    Ordering,
    PatchOutcome,
    PatchResult,
    PatchSpec,
    ValidationReport,
)
from .parser import lint_diff, parse_file_diffs
from .text import (
    BOM,
    CRLF,
    LF,
    content_lines,
    detect_newline,
    join_lines,
    split_text,
    split_verbatim,
)


def _coerce_specs(patches: Iterable[Union[PatchSpec, dict]]) -> List[PatchSpec]:
    specs: List[PatchSpec] = []
    for i, p in enumerate(patches):
        if isinstance(p, PatchSpec):
            specs.append(p)
            continue
        try:
            specs.append(PatchSpec.model_validate(p))
        except ValidationError as e:
            errors = "; ".join(err["msg"] for err in e.errors())
            raise DiffError(f"Invalid patch spec: {errors}", patch_index=i) from e
    return specs


def format_excerpt(
    lines: Sequence[str], span: LineSpan, new: Sequence[str], context: int
) -> str:
    """
    Numbered before/after excerpt of one edit: removed lines marked '-',
    inserted lines '+', surrounding lines unmarked.
    """
    out: List[str] = []
    first = max(0, span.start - 1 - context)
    for i in range(first, span.start - 1):
        out.append(f"{i + 1:>5}   {lines[i]}")
    for i in range(span.start - 1, span.end):
        out.append(f"{i + 1:>5} - {lines[i]}")
    for k, line in enumerate(new):
        out.append(f"{span.start + k:>5} + {line}")
    for i in range(span.end, min(len(lines), span.end + context)):
        out.append(f"{i + 1:>5}   {lines[i]}")
    return "\n".join(out)


def _overlaps(a: LineSpan, b: LineSpan) -> bool:
    # Spans as half-open 0-based intervals; an insertion point conflicts with
    # another insertion at the same place or with the inside of a span
    a0, a1 = a.start - 1, a.end
    b0, b1 = b.start - 1, b.end
    if a.is_empty and b.is_empty:
        return a0 == b0
    if a.is_empty:
        return b0 < a0 < b1
    if b.is_empty:
        return a0 < b0 < a1
    return max(a0, b0) < min(a1, b1)


def _resolve(
    lines: Sequence[str], spec: PatchSpec, index: int, options: ApplyOptions
) -> LineSpan:
    try:
        span = locate(lines, spec, ignore_whitespace=options.ignore_whitespace)
        if options.validate_context and spec.validate_context:
            validate_context(lines, span, spec)
    except DiffError as e:
        e.patch_index = index
        raise
    return span


def apply_patches(
    file_text: str,
    patches: Iterable[Union[PatchSpec, dict]],
    options: Optional[ApplyOptions] = None,
) -> PatchResult:
    """
    Apply patch specs to `file_text`, all or nothing.

    In sequential ordering every spec is located against the buffer as left
    by the specs before it. In independent ordering all specs are located
    against the original text and spliced bottom-up. Any failure raises a
    DiffError whose `patch_index` names the failing spec.
    """
    options = options or ApplyOptions()
    specs = _coerce_specs(patches)
    split = split_text(file_text)
    buf = list(split.lines)
    outcomes: List[PatchOutcome] = []

    if options.ordering == Ordering.sequential:
        for i, spec in enumerate(specs):
            span = _resolve(buf, spec, i, options)
            new = content_lines(spec.new_content)
            outcomes.append(
                PatchOutcome(
                    index=i,
                    start_line=span.start,
                    end_line=span.end,
                    lines_added=len(new),
                    lines_removed=span.length,
                    preview=format_excerpt(buf, span, new, options.preview_context),
                )
            )
            buf[span.to_slice()] = new
    else:
        resolved: List[Tuple[int, LineSpan, List[str]]] = []
        for i, spec in enumerate(specs):
            span = _resolve(buf, spec, i, options)
            for j, other, _new in resolved:
                if _overlaps(span, other):
                    raise OverlappingPatchError(
                        f"{span} overlaps {other} of patch #{j + 1}",
                        patch_index=i,
                        line=span.start,
                        hint="Merge the overlapping edits or use sequential ordering.",
                    )
            resolved.append((i, span, content_lines(spec.new_content)))
        for i, span, new in resolved:
            outcomes.append(
                PatchOutcome(
                    index=i,
                    start_line=span.start,
                    end_line=span.end,
                    lines_added=len(new),
                    lines_removed=span.length,
                    preview=format_excerpt(buf, span, new, options.preview_context),
                )
            )
        # Bottom-up; at equal starts the span goes before the insertion point
        for i, span, new in sorted(
            resolved, key=lambda r: (r[1].start, not r[1].is_empty), reverse=True
        ):
            buf[span.to_slice()] = new

    eol = split.eol or not split.lines
    new_text = join_lines(buf, newline=split.newline, eol=eol, bom=split.bom)
    result = PatchResult(
        text=file_text if options.dry_run else new_text,
        preview=new_text,
        changed=new_text != file_text,
        lines_added=sum(o.lines_added for o in outcomes),
        lines_removed=sum(o.lines_removed for o in outcomes),
        dry_run=options.dry_run,
        outcomes=outcomes,
    )
    logger.debug(
        "applied patches",
        count=len(specs),
        added=result.lines_added,
        removed=result.lines_removed,
        dry_run=options.dry_run,
    )
    return result


@dataclass
class _HunkRun:
    lines: List[str]
    outcomes: List[PatchOutcome] = field(default_factory=list)
    conflicts: List[HunkConflict] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # Trailing newline decided by a hunk touching the end of the file
    eol: Optional[bool] = None


def _run_hunks(
    lines: Sequence[str],
    hunks: Sequence[Hunk],
    options: ApplyOptions,
    *,
    filename: Optional[str] = None,
    collect_conflicts: bool = False,
) -> _HunkRun:
    run = _HunkRun(lines=list(lines))
    buf = run.lines
    offset = 0
    for i, hunk in enumerate(hunks):
        try:
            match = locate_hunk(
                buf,
                hunk,
                offset=offset,
                ignore_whitespace=options.ignore_whitespace,
                fuzzy=options.fuzzy,
            )
        except DiffError as e:
            e.patch_index = i
            e.filename = e.filename or filename
            if not collect_conflicts:
                raise
            conflict = HunkConflict(
                hunk_index=i, line=hunk.old_start, description=e.msg, hint=e.hint
            )
            if isinstance(e, HunkMismatchError):
                conflict.expected = e.expected
                conflict.actual = e.actual
                conflict.details = e.details()
            run.conflicts.append(conflict)
            continue

        span = match.span
        file_old = buf[span.to_slice()]
        new: List[str] = []
        k = 0
        for hl in hunk.lines:
            if hl.tag == LineTag.context:
                # Keep the file's own text for context lines
                new.append(file_old[k])
                k += 1
            elif hl.tag == LineTag.removed:
                k += 1
            else:
                new.append(hl.text)

        if match.offset:
            run.warnings.append(
                f"Hunk {i + 1} ({hunk.header()}) applied at offset {match.offset:+d}"
            )
        if match.fuzzy:
            run.warnings.append(
                f"Hunk {i + 1} ({hunk.header()}) matched approximately "
                f"at line {span.start} (score {match.score:.2f})"
            )

        touches_end = span.end == len(buf)
        run.outcomes.append(
            PatchOutcome(
                index=i,
                start_line=span.start,
                end_line=span.end,
                lines_added=sum(1 for l in hunk.lines if l.tag == LineTag.added),
                lines_removed=sum(1 for l in hunk.lines if l.tag == LineTag.removed),
                offset=match.offset,
                fuzzy=match.fuzzy,
                preview=format_excerpt(buf, span, new, options.preview_context),
            )
        )
        buf[span.to_slice()] = new
        offset += match.offset + len(new) - span.length

        if touches_end:
            if new:
                run.eol = not hunk.new_missing_eol
            elif span.length:
                # Removed the tail; the new last line kept its newline
                run.eol = True
    return run


def _carries(hunks: Sequence[Hunk], marker: str) -> bool:
    return any(marker in hl.text for hunk in hunks for hl in hunk.lines)


def _peel(file_text: str, hunks: Sequence[Hunk]) -> Tuple[str, str, bool]:
    """
    Remove the BOM and CRLF convention from `file_text` when the hunks do
    not carry them. Returns (text, newline, bom).
    """
    text, newline, bom = file_text, LF, False
    if text.startswith(BOM) and not _carries(hunks, BOM):
        text, bom = text[len(BOM) :], True
    if detect_newline(text) == CRLF and not _carries(hunks, "\r"):
        text, newline = text.replace(CRLF, LF), CRLF
    return text, newline, bom


def _single_target(diff_text: str, strict: bool = True) -> Optional[FileDiff]:
    files = parse_file_diffs(diff_text, strict=strict)
    targets = [f for f in files if f.hunks or f.is_new_file or f.is_deleted]
    if len(targets) > 1:
        raise MalformedDiffError(
            f"Diff touches {len(targets)} files; apply it as a patch set",
            hint="Split the diff per file or use apply_patch.",
        )
    return targets[0] if targets else None


def _leftover_message(filename: Optional[str], remaining: int) -> str:
    return f"Diff deletes {filename or 'the file'} but {remaining} lines would remain"


def apply_file_diff(
    file_text: str, target: Optional[FileDiff], options: Optional[ApplyOptions] = None
) -> PatchResult:
    """Apply the hunks of one parsed file section to `file_text`."""
    options = options or ApplyOptions()
    hunks = target.hunks if target is not None else []
    filename = target.path if target is not None else None

    if target is not None and target.is_new_file and file_text:
        raise DiffError(
            f"Diff creates {filename or 'a new file'}, but the file already has content",
            filename=filename,
        )

    text, newline, bom = _peel(file_text, hunks)
    lines, eol = split_verbatim(text)
    run = _run_hunks(lines, hunks, options, filename=filename)
    if target is not None and target.is_deleted and run.lines:
        raise DiffError(
            _leftover_message(filename, len(run.lines)),
            filename=filename,
            hint="A diff to /dev/null must remove every line of the file.",
        )
    if run.eol is not None:
        eol = run.eol

    new_text = join_lines(run.lines, newline=newline, eol=eol, bom=bom)
    for w in run.warnings:
        logger.warning("diff applied with adjustment", file=filename, detail=w)
    return PatchResult(
        text=file_text if options.dry_run else new_text,
        preview=new_text,
        changed=new_text != file_text,
        lines_added=sum(o.lines_added for o in run.outcomes),
        lines_removed=sum(o.lines_removed for o in run.outcomes),
        dry_run=options.dry_run,
        outcomes=run.outcomes,
        warnings=run.warnings,
    )


def apply_unified_diff(
    file_text: str,
    diff_text: str,
    options: Optional[ApplyOptions] = None,
    *,
    strict: bool = True,
) -> PatchResult:
    """
    Apply a single-file unified diff to `file_text`.

    Hunks are applied in order, each located near its declared line shifted
    by the line delta of the hunks before it.
    """
    return apply_file_diff(file_text, _single_target(diff_text, strict), options)


def check_unified_diff(
    file_text: str,
    diff_text: str,
    options: Optional[ApplyOptions] = None,
    *,
    strict: bool = True,
) -> ValidationReport:
    """
    Report whether a diff is well-formed and whether it applies to
    `file_text`, listing every hunk that does not. Never raises DiffError.
    """
    options = options or ApplyOptions()
    warnings: List[str] = list(lint_diff(diff_text))
    try:
        target = _single_target(diff_text, strict)
    except MalformedDiffError as e:
        return ValidationReport(
            valid=False, applicable=False, warnings=warnings, errors=[str(e)]
        )

    hunks = target.hunks if target is not None else []
    errors: List[str] = []
    if target is not None and target.is_new_file and file_text:
        errors.append("Diff creates a new file, but the file already has content")

    text, _newline, _bom = _peel(file_text, hunks)
    lines, _eol = split_verbatim(text)
    run = _run_hunks(lines, hunks, options, collect_conflicts=True)
    if target is not None and target.is_deleted and run.lines and not run.conflicts:
        errors.append(_leftover_message(target.path, len(run.lines)))
    warnings.extend(run.warnings)
    return ValidationReport(
        valid=True,
        applicable=not run.conflicts and not errors,
        conflicts=run.conflicts,
        warnings=warnings,
        errors=errors,
    )
