from __future__ import annotations

import re
from typing import List, Optional

from unipatch.logger import logger

from .errors import MalformedDiffError
from .models import DEV_NULL, FileDiff, Hunk, HunkLine, LineTag
from .text import split_verbatim


HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@(.*)$")
GIT_HEADER_RE = re.compile(r"^diff --git (?:a/)?(\S+) (?:b/)?(\S+)\s*$")
OLD_FILE_PREFIX = "--- "
NEW_FILE_PREFIX = "+++ "
NO_EOL_PREFIX = "\\"

_TAGS = {" ": LineTag.context, "-": LineTag.removed, "+": LineTag.added}


def _extract_path(raw: str) -> str:
    # Drop timestamps ("path\t2024-01-01 ...") and a/ b/ prefixes
    path = raw.split("\t", 1)[0].strip()
    if path.startswith('"') and path.endswith('"') and len(path) > 1:
        path = path[1:-1]
    if path != DEV_NULL and (path.startswith("a/") or path.startswith("b/")):
        path = path[2:]
    return path


def _is_file_header(lines: List[str], i: int) -> bool:
    return (
        lines[i].startswith(OLD_FILE_PREFIX)
        and i + 1 < len(lines)
        and lines[i + 1].startswith(NEW_FILE_PREFIX)
    )


def _starts_section(lines: List[str], i: int) -> bool:
    """A 'diff --git' line, or a ---/+++ pair directly followed by a hunk."""
    if GIT_HEADER_RE.match(lines[i].rstrip("\r")):
        return True
    return (
        _is_file_header(lines, i)
        and i + 2 < len(lines)
        and lines[i + 2].startswith("@@")
    )


def _looks_like_body(line: str) -> bool:
    return line[:1] in _TAGS


def _parse_header(line: str, line_no: int) -> Hunk:
    m = HUNK_HEADER_RE.match(line.rstrip("\r"))
    if m is None:
        raise MalformedDiffError(
            f"Invalid hunk header: {line!r}",
            line=line_no,
            hint="Hunk headers look like '@@ -12,5 +12,6 @@'",
        )
    old_start = int(m.group(1))
    old_length = int(m.group(2)) if m.group(2) is not None else 1
    new_start = int(m.group(3))
    new_length = int(m.group(4)) if m.group(4) is not None else 1
    if (old_start == 0 and old_length > 0) or (new_start == 0 and new_length > 0):
        raise MalformedDiffError(
            f"Invalid hunk header: {line!r} (line 0 with non-zero length)",
            line=line_no,
        )
    return Hunk(
        old_start=old_start,
        old_length=old_length,
        new_start=new_start,
        new_length=new_length,
        section=m.group(5).strip(),
        header_line=line_no,
    )


def _read_body(
    hunk: Hunk, lines: List[str], start: int, *, strict: bool, hunk_no: int
) -> int:
    """
    Consume the hunk body starting at index `start`, driven by the declared
    lengths. Returns the index of the first line after the hunk.
    """
    old_rem, new_rem = hunk.old_length, hunk.new_length
    i = start
    while i < len(lines):
        line = lines[i]
        if line.startswith(NO_EOL_PREFIX):
            if hunk.lines:
                last = hunk.lines[-1]
                if last.tag != LineTag.added:
                    hunk.old_missing_eol = True
                if last.tag != LineTag.removed:
                    hunk.new_missing_eol = True
            i += 1
            continue
        if _starts_section(lines, i):
            break
        if old_rem <= 0 and new_rem <= 0:
            if strict or not _looks_like_body(line) or _is_file_header(lines, i):
                break
        if line == "":
            # Blank context line with its leading space stripped by an editor
            tag, text = LineTag.context, ""
        elif _looks_like_body(line):
            tag, text = _TAGS[line[0]], line[1:]
        else:
            break
        if strict and (
            (tag != LineTag.added and old_rem <= 0)
            or (tag != LineTag.removed and new_rem <= 0)
        ):
            break
        hunk.lines.append(HunkLine(tag=tag, text=text))
        if tag != LineTag.added:
            old_rem -= 1
        if tag != LineTag.removed:
            new_rem -= 1
        i += 1

    old_count, new_count = hunk.counted_lengths()
    mismatch = old_count != hunk.old_length or new_count != hunk.new_length
    overrun = (
        strict
        and i < len(lines)
        and _looks_like_body(lines[i])
        and not _is_file_header(lines, i)
    )
    if mismatch or overrun:
        if overrun:
            detail = "body is longer than its header declares"
        else:
            detail = (
                f"header declares -{hunk.old_length} +{hunk.new_length} lines, "
                f"body has -{old_count} +{new_count}"
            )
        msg = f"Hunk {hunk_no} ({hunk.header()}): {detail}"
        if strict:
            raise MalformedDiffError(
                msg,
                line=hunk.header_line,
                hint="Fix the @@ line counts or parse with strict=False to recount them.",
            )
        logger.warning("recounted hunk lengths", hunk=hunk_no, detail=detail)
        hunk.warnings.append(msg)
        hunk.old_length, hunk.new_length = old_count, new_count
    return i


def parse_file_diffs(diff_text: str, *, strict: bool = True) -> List[FileDiff]:
    """
    Parse unified diff text into per-file sections.

    Hunks that appear before any '---'/'+++' header are collected into an
    anonymous FileDiff (paths None). Text outside hunks is ignored.
    """
    lines, _eol = split_verbatim(diff_text)
    files: List[FileDiff] = []
    current: Optional[FileDiff] = None
    # A 'diff --git' header opens a section whose ---/+++ lines may follow
    git_pending = False
    hunk_no = 0

    i = 0
    while i < len(lines):
        line = lines[i]

        m_git = GIT_HEADER_RE.match(line.rstrip("\r"))
        if m_git is not None:
            current = FileDiff(old_path=m_git.group(1), new_path=m_git.group(2))
            files.append(current)
            git_pending = True
            i += 1
            continue

        if _is_file_header(lines, i):
            old_path = _extract_path(line[len(OLD_FILE_PREFIX) :])
            new_path = _extract_path(lines[i + 1][len(NEW_FILE_PREFIX) :])
            if git_pending and current is not None and not current.hunks:
                current.old_path, current.new_path = old_path, new_path
            else:
                current = FileDiff(old_path=old_path, new_path=new_path)
                files.append(current)
            git_pending = False
            i += 2
            continue

        if line.startswith("@@"):
            hunk_no += 1
            hunk = _parse_header(line, i + 1)
            if current is None:
                current = FileDiff()
                files.append(current)
            i = _read_body(hunk, lines, i + 1, strict=strict, hunk_no=hunk_no)
            current.hunks.append(hunk)
            git_pending = False
            continue

        i += 1

    if hunk_no == 0 and diff_text.strip():
        if not any(f.is_new_file or f.is_deleted for f in files):
            raise MalformedDiffError(
                "No hunks found in diff",
                hint="A unified diff needs at least one '@@ -l,s +l,s @@' hunk.",
            )
    return files


def parse_diff(diff_text: str, *, strict: bool = True) -> List[Hunk]:
    """All hunks of a unified diff, in order of appearance."""
    hunks: List[Hunk] = []
    for fd in parse_file_diffs(diff_text, strict=strict):
        hunks.extend(fd.hunks)
    return hunks


def lint_diff(diff_text: str) -> List[str]:
    """
    Format problems of a diff; empty when it is well-formed.
    """
    problems: List[str] = []
    try:
        files = parse_file_diffs(diff_text, strict=False)
    except MalformedDiffError as e:
        return [str(e)]
    if not files:
        return ["No valid diff content found"]
    for fd in files:
        if not fd.hunks and not (fd.is_new_file or fd.is_deleted):
            problems.append(f"No hunks found for {fd.path or '<unnamed>'}")
        for hunk in fd.hunks:
            problems.extend(hunk.warnings)
    return problems


