from __future__ import annotations

import difflib
import re
from typing import Callable, List, Optional, Sequence, Tuple

from unipatch.logger import logger

from .errors import (
    AmbiguousPatchError,
    ContextValidationError,
    HunkMismatchError,
    PatchNotFoundError,
)
from .models import (
    ContentLocator,
    Hunk,
    HunkMatch,
    LineRangeLocator,
    LineSpan,
    MatchMode,
    PatchSpec,
    PatternLocator,
)
from .text import content_lines, normalize_whitespace

# Candidate lines listed in ambiguity messages
MAX_LISTED_CANDIDATES = 10


def _preview(text: str, limit: int = 60) -> str:
    text = text.strip()
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def _format_candidates(indices: Sequence[int]) -> str:
    shown = ", ".join(str(i + 1) for i in indices[:MAX_LISTED_CANDIDATES])
    if len(indices) > MAX_LISTED_CANDIDATES:
        shown += f", ... ({len(indices)} total)"
    return shown


def _pattern_predicate(loc: PatternLocator) -> Callable[[str], bool]:
    if loc.match_mode == MatchMode.regex:
        rx = re.compile(loc.search_pattern)
        return lambda line: rx.search(line) is not None
    if loc.match_mode == MatchMode.case_insensitive:
        needle = loc.search_pattern.casefold()
        return lambda line: needle in line.casefold()
    needle = loc.search_pattern
    return lambda line: needle in line


def find_pattern_lines(lines: Sequence[str], loc: PatternLocator) -> List[int]:
    """0-based indices of every line matching the pattern, top to bottom."""
    matches = _pattern_predicate(loc)
    return [i for i, line in enumerate(lines) if matches(line)]


def find_block(
    lines: Sequence[str], block: Sequence[str], *, ignore_whitespace: bool = False
) -> List[int]:
    """0-based start indices of every contiguous run equal to `block`."""
    size = len(block)
    if size == 0 or size > len(lines):
        return []
    if ignore_whitespace:
        target = [normalize_whitespace(l) for l in block]
        hay = [normalize_whitespace(l) for l in lines]
    else:
        target, hay = list(block), list(lines)
    first = target[0]
    found: List[int] = []
    for i in range(len(hay) - size + 1):
        if hay[i] == first and hay[i : i + size] == target:
            found.append(i)
    return found


def _nearest(candidates: Sequence[int], anchor: int) -> int:
    # Ties go to the earlier candidate
    return min(candidates, key=lambda c: (abs(c - anchor), c))


def _locate_lines(lines: Sequence[str], loc: LineRangeLocator) -> LineSpan:
    total = len(lines)
    start, end = loc.start_line, loc.last_line
    if end < start:
        if start > total + 1:
            raise PatchNotFoundError(
                f"Insertion point line {start} is beyond the end of the file ({total} lines)",
                line=start,
            )
        return LineSpan(start, end)
    if start < 1 or end > total:
        raise PatchNotFoundError(
            f"Line range {start}-{end} is out of bounds (file has {total} lines)",
            line=start,
            hint="Re-read the file to get current line numbers.",
        )
    return LineSpan(start, end)


def _locate_pattern(lines: Sequence[str], loc: PatternLocator) -> LineSpan:
    found = find_pattern_lines(lines, loc)
    described = f"{loc.match_mode.value} pattern {loc.search_pattern!r}"
    if not found:
        raise PatchNotFoundError(f"No line matches {described}")
    if loc.occurrence is None:
        if len(found) > 1:
            raise AmbiguousPatchError(
                f"{described} matches {len(found)} lines ({_format_candidates(found)})",
                candidates=[i + 1 for i in found],
                hint="Set occurrence to pick one of the matches.",
            )
        idx = found[0]
    else:
        if loc.occurrence > len(found):
            raise PatchNotFoundError(
                f"Occurrence {loc.occurrence} of {described} requested, "
                f"but only {len(found)} found",
                hint=f"Matching lines: {_format_candidates(found)}",
            )
        idx = found[loc.occurrence - 1]
    return LineSpan(idx + 1, idx + 1)


def _locate_content(
    lines: Sequence[str], loc: ContentLocator, *, ignore_whitespace: bool
) -> LineSpan:
    block = content_lines(loc.old_content)
    if not block:
        raise PatchNotFoundError("Old content is empty")
    found = find_block(lines, block, ignore_whitespace=ignore_whitespace)
    if not found:
        raise PatchNotFoundError(
            f"Old content not found: {_preview(block[0])!r}"
            + (f" (+{len(block) - 1} more lines)" if len(block) > 1 else ""),
            hint="Old content must match the file exactly, including indentation.",
        )
    if loc.occurrence is not None:
        if loc.occurrence > len(found):
            raise PatchNotFoundError(
                f"Occurrence {loc.occurrence} of old content requested, "
                f"but only {len(found)} found",
            )
        idx = found[loc.occurrence - 1]
    elif loc.near_line is not None:
        idx = _nearest(found, loc.near_line - 1)
    elif len(found) == 1:
        idx = found[0]
    else:
        raise AmbiguousPatchError(
            f"Old content occurs {len(found)} times (lines {_format_candidates(found)})",
            candidates=[i + 1 for i in found],
            hint="Set occurrence or nearLine, or include more surrounding lines.",
        )
    return LineSpan(idx + 1, idx + len(block))


def locate(
    lines: Sequence[str], spec: PatchSpec, *, ignore_whitespace: bool = False
) -> LineSpan:
    """
    Resolve a patch spec to a 1-based inclusive line span of `lines`.
    """
    loc = spec.locator
    if isinstance(loc, LineRangeLocator):
        span = _locate_lines(lines, loc)
    elif isinstance(loc, PatternLocator):
        span = _locate_pattern(lines, loc)
    else:
        span = _locate_content(lines, loc, ignore_whitespace=ignore_whitespace)
    logger.debug("located patch", locator=loc.kind, span=str(span))
    return span


def validate_context(lines: Sequence[str], span: LineSpan, spec: PatchSpec) -> None:
    """
    Check the lines around `span` against the patch's expected context.
    Comparison ignores leading and trailing whitespace.
    """
    checks = []
    if spec.context_before:
        n = len(spec.context_before)
        first = span.start - 1 - n
        actual = [lines[i] if 0 <= i < len(lines) else None for i in range(first, first + n)]
        checks.append(("before", spec.context_before, actual, max(first + 1, 1)))
    if spec.context_after:
        n = len(spec.context_after)
        first = span.end
        actual = [lines[i] if 0 <= i < len(lines) else None for i in range(first, first + n)]
        checks.append(("after", spec.context_after, actual, first + 1))

    for where, expected, actual, line_no in checks:
        for exp, act in zip(expected, actual):
            if act is None or exp.strip() != act.strip():
                shown = "<missing>" if act is None else repr(act.strip())
                raise ContextValidationError(
                    f"Context {where} {span} does not match: expected "
                    f"{exp.strip()!r}, found {shown}",
                    expected=list(expected),
                    actual=actual,
                    line=line_no,
                    hint="The file changed since it was read; re-read it and regenerate the patch.",
                )


def _similarity(a: Sequence[str], b: Sequence[str]) -> float:
    total = 0.0
    for x, y in zip(a, b):
        if x == y:
            total += 1.0
        else:
            total += difflib.SequenceMatcher(None, x.strip(), y.strip()).ratio()
    return total / len(a)


def locate_hunk(
    lines: Sequence[str],
    hunk: Hunk,
    *,
    offset: int = 0,
    ignore_whitespace: bool = False,
    fuzzy: int = 0,
) -> HunkMatch:
    """
    Find where the old side of `hunk` sits in `lines`.

    `offset` shifts the declared position (earlier hunks' line delta and
    drift). Exact matches are preferred, then whitespace-insensitive ones,
    then similarity matches scoring at least `fuzzy` percent.
    """
    old = hunk.old_lines()
    expected = (hunk.old_start - 1 if old else hunk.old_start) + offset

    if not old:
        if expected < 0 or expected > len(lines):
            raise PatchNotFoundError(
                f"Insertion point {hunk.old_start} of {hunk.header()} is outside "
                f"the file ({len(lines)} lines)",
                line=hunk.header_line,
            )
        return HunkMatch(span=LineSpan(expected + 1, expected), offset=0)

    found = find_block(lines, old)
    if found:
        idx = _nearest(found, expected)
        return HunkMatch(span=LineSpan(idx + 1, idx + len(old)), offset=idx - expected)

    if ignore_whitespace:
        found = find_block(lines, old, ignore_whitespace=True)
        if found:
            idx = _nearest(found, expected)
            logger.warning(
                "hunk matched ignoring whitespace", hunk=hunk.header(), line=idx + 1
            )
            return HunkMatch(
                span=LineSpan(idx + 1, idx + len(old)),
                offset=idx - expected,
                fuzzy=True,
            )

    if fuzzy > 0 and len(old) <= len(lines):
        threshold = fuzzy / 100.0
        best: Optional[int] = None
        best_score = 0.0
        for i in range(len(lines) - len(old) + 1):
            score = _similarity(old, lines[i : i + len(old)])
            if score < threshold:
                continue
            if (
                best is None
                or score > best_score
                or (score == best_score and abs(i - expected) < abs(best - expected))
            ):
                best, best_score = i, score
        if best is not None:
            logger.warning(
                "hunk matched fuzzily",
                hunk=hunk.header(),
                line=best + 1,
                score=round(best_score, 3),
            )
            return HunkMatch(
                span=LineSpan(best + 1, best + len(old)),
                offset=best - expected,
                fuzzy=True,
                score=best_score,
            )

    start, score = _closest_run(lines, old, expected)
    actual: List[Optional[str]] = list(lines[start : start + len(old)])
    actual += [None] * (len(old) - len(actual))
    raise HunkMismatchError(
        f"Hunk {hunk.header()} does not match the file near line {max(expected + 1, 1)}: "
        f"expected {_preview(old[0])!r}; closest lines at {start + 1} are "
        f"{round(score * 100)}% similar",
        expected=old,
        actual=actual,
        closest_line=start + 1,
        similarity=score,
        line=hunk.header_line,
        hint=_mismatch_hint(old, actual, score),
    )


def _closest_run(lines: Sequence[str], old: Sequence[str], anchor: int) -> Tuple[int, float]:
    """
    0-based start and similarity of the run of lines most like `old`. Runs
    may end past the last line; missing lines score zero.
    """
    best, best_score = 0, -1.0
    for i in range(max(len(lines), 1)):
        score = _similarity(old, lines[i : i + len(old)])
        if score > best_score or (
            score == best_score and abs(i - anchor) < abs(best - anchor)
        ):
            best, best_score = i, score
    return best, max(best_score, 0.0)


def _mismatch_hint(
    expected: Sequence[str], actual: Sequence[Optional[str]], score: float
) -> str:
    differing = [(e, a) for e, a in zip(expected, actual) if e != a]
    if all(
        a is not None and normalize_whitespace(e) == normalize_whitespace(a)
        for e, a in differing
    ):
        return "The lines differ only in whitespace; retry with ignoreWhitespace."
    if score >= 0.5:
        level = max(50, int(score * 10) * 10)
        return (
            f"If the closest lines are the intended target, retry with fuzzy={level}; "
            "otherwise re-read the file and regenerate the diff."
        )
    return "Re-read the file and regenerate the diff against its current content."
