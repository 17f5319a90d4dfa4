from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .text import BOM, CRLF, detect_newline, split_verbatim

NO_EOL_MARKER = "\\ No newline at end of file"

# (line text, ends with a newline)
Token = Tuple[str, bool]


@dataclass
class _Block:
    """a[i1:i2] is replaced by b[j1:j2]."""

    i1: int
    i2: int
    j1: int
    j2: int


def _tokenize(text: str) -> List[Token]:
    lines, eol = split_verbatim(text)
    tokens = [(line, True) for line in lines]
    if tokens and not eol:
        tokens[-1] = (tokens[-1][0], False)
    return tokens


def _myers(a: Sequence[Token], b: Sequence[Token]) -> List[Tuple[int, int, int, int]]:
    """
    Shortest edit script between a and b (Myers, O(ND)).

    Returns the path as a list of single steps (prev_x, prev_y, x, y) from
    (0, 0) to (len(a), len(b)). A diagonal step is an equal line, a
    horizontal one a deletion, a vertical one an insertion.
    """
    n, m = len(a), len(b)
    v: Dict[int, int] = {1: 0}
    trace: List[Dict[int, int]] = []

    for d in range(n + m + 1):
        trace.append(dict(v))
        done = False
        for k in range(-d, d + 1, 2):
            if k == -d or (k != d and v[k - 1] < v[k + 1]):
                x = v[k + 1]
            else:
                x = v[k - 1] + 1
            y = x - k
            while x < n and y < m and a[x] == b[y]:
                x += 1
                y += 1
            v[k] = x
            if x >= n and y >= m:
                done = True
                break
        if done:
            break

    steps: List[Tuple[int, int, int, int]] = []
    x, y = n, m
    for d in range(len(trace) - 1, -1, -1):
        v = trace[d]
        k = x - y
        if k == -d or (k != d and v[k - 1] < v[k + 1]):
            prev_k = k + 1
        else:
            prev_k = k - 1
        prev_x = v[prev_k]
        prev_y = prev_x - prev_k
        while x > prev_x and y > prev_y:
            steps.append((x - 1, y - 1, x, y))
            x -= 1
            y -= 1
        if d > 0:
            steps.append((prev_x, prev_y, x, y))
        x, y = prev_x, prev_y

    steps.reverse()
    return steps


def _change_blocks(a: List[Token], b: List[Token]) -> List[_Block]:
    n, m = len(a), len(b)
    lo = 0
    while lo < n and lo < m and a[lo] == b[lo]:
        lo += 1
    hi = 0
    while hi < n - lo and hi < m - lo and a[n - 1 - hi] == b[m - 1 - hi]:
        hi += 1

    blocks: List[_Block] = []
    current: _Block | None = None
    for px, py, x, y in _myers(a[lo : n - hi], b[lo : m - hi]):
        px, py, x, y = px + lo, py + lo, x + lo, y + lo
        if x - px == 1 and y - py == 1:
            if current is not None:
                blocks.append(current)
                current = None
            continue
        if current is None:
            current = _Block(px, px, py, py)
        current.i2, current.j2 = x, y
    if current is not None:
        blocks.append(current)
    return blocks


@dataclass
class _Region:
    """Blocks emitted as one hunk spanning a[start:stop]."""

    blocks: List[_Block]
    start: int
    stop: int


def _regions(blocks: List[_Block], context_lines: int, n: int) -> List[_Region]:
    regions: List[_Region] = []
    for block in blocks:
        start = max(0, block.i1 - context_lines)
        stop = min(n, block.i2 + context_lines)
        if regions and start <= regions[-1].stop:
            regions[-1].blocks.append(block)
            regions[-1].stop = stop
        else:
            regions.append(_Region([block], start, stop))
    return regions


def _carries(a: List[Token], b: List[Token], regions: List[_Region], marker: str) -> bool:
    for r in regions:
        if any(marker in t[0] for t in a[r.start : r.stop]):
            return True
        for block in r.blocks:
            if any(marker in t[0] for t in b[block.j1 : block.j2]):
                return True
    return False


def _widen_to(a: List[Token], regions: List[_Region], marker: str) -> List[_Region]:
    """
    Extend the region nearest to a line of `a` holding `marker` so that the
    line becomes context, merging regions that end up touching.
    """
    best: Optional[Tuple[int, int, int]] = None
    for k, (text, _eol) in enumerate(a):
        if marker not in text:
            continue
        for idx, r in enumerate(regions):
            dist = r.start - k if k < r.start else k - r.stop + 1
            if best is None or dist < best[0]:
                best = (dist, k, idx)
    if best is None:
        return regions
    _dist, k, idx = best
    target = regions[idx]
    target.start, target.stop = min(target.start, k), max(target.stop, k + 1)

    merged: List[_Region] = []
    for r in regions:
        if merged and r.start <= merged[-1].stop:
            merged[-1].blocks.extend(r.blocks)
            merged[-1].stop = max(merged[-1].stop, r.stop)
        else:
            merged.append(r)
    return merged


def _format_range(start: int, stop: int) -> str:
    beginning = start + 1
    length = stop - start
    if length == 1:
        return str(beginning)
    if not length:
        beginning -= 1
    return f"{beginning},{length}"


def _emit(out: List[str], prefix: str, token: Token) -> None:
    out.append(prefix + token[0])
    if not token[1]:
        out.append(NO_EOL_MARKER)


def create_diff(
    original: str,
    modified: str,
    context_lines: int = 3,
    *,
    from_file: str = "original",
    to_file: str = "modified",
) -> str:
    """
    Unified diff turning `original` into `modified`.

    Lines are split on '\\n' only and compared together with their newline,
    so a change to the final line's terminator is a real change. Returns ""
    for identical inputs.

    When `original` is CRLF throughout or starts with a BOM, at least one
    hunk line carries the CR (or BOM), widening a hunk by context if needed,
    so applying the diff matches the file verbatim.
    """
    if context_lines < 0:
        raise ValueError(f"context_lines must be >= 0, got {context_lines}")
    if original == modified:
        return ""

    a = _tokenize(original)
    b = _tokenize(modified)
    blocks = _change_blocks(a, b)
    if not blocks:
        return ""

    regions = _regions(blocks, context_lines, len(a))
    markers = []
    if detect_newline(original) == CRLF:
        markers.append("\r")
    if original.startswith(BOM):
        markers.append(BOM)
    for marker in markers:
        if not _carries(a, b, regions, marker):
            regions = _widen_to(a, regions, marker)

    out: List[str] = [f"--- {from_file}", f"+++ {to_file}"]
    for r in regions:
        first, last = r.blocks[0], r.blocks[-1]
        new_start = first.j1 - (first.i1 - r.start)
        new_end = last.j2 + (r.stop - last.i2)
        out.append(
            f"@@ -{_format_range(r.start, r.stop)} "
            f"+{_format_range(new_start, new_end)} @@"
        )

        i = r.start
        for block in r.blocks:
            for t in a[i : block.i1]:
                _emit(out, " ", t)
            for t in a[block.i1 : block.i2]:
                _emit(out, "-", t)
            for t in b[block.j1 : block.j2]:
                _emit(out, "+", t)
            i = block.i2
        for t in a[i : r.stop]:
            _emit(out, " ", t)

    return "\n".join(out) + "\n"
