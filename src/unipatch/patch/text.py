from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

BOM = "\ufeff"
LF = "\n"
CRLF = "\r\n"


@dataclass
class SplitText:
    lines: List[str]
    newline: str = LF
    eol: bool = False
    bom: bool = False

    def join(self, lines: List[str] | None = None) -> str:
        return join_lines(
            self.lines if lines is None else lines,
            newline=self.newline,
            eol=self.eol,
            bom=self.bom,
        )


def detect_newline(text: str) -> str:
    # CRLF only when every newline in the text is CRLF; mixed files stay verbatim
    n = text.count(LF)
    if n and text.count(CRLF) == n:
        return CRLF
    return LF


def split_verbatim(text: str) -> Tuple[List[str], bool]:
    """
    Split on '\\n' only. Carriage returns and a BOM stay part of the line text.
    Returns (lines, had_trailing_newline).
    """
    if not text:
        return [], False
    lines = text.split(LF)
    if lines[-1] == "":
        lines.pop()
        return lines, True
    return lines, False


def split_text(text: str, *, strip_bom: bool = True) -> SplitText:
    bom = strip_bom and text.startswith(BOM)
    if bom:
        text = text[len(BOM) :]
    newline = detect_newline(text)
    if newline == LF:
        lines, eol = split_verbatim(text)
    else:
        lines = text.split(CRLF)
        eol = lines[-1] == ""
        if eol:
            lines.pop()
    return SplitText(lines=lines, newline=newline, eol=eol, bom=bom)


def join_lines(
    lines: List[str], *, newline: str = LF, eol: bool = False, bom: bool = False
) -> str:
    # An empty buffer is an empty file, without BOM or newline
    if not lines:
        return ""
    s = newline.join(lines)
    if eol:
        s += newline
    return (BOM if bom else "") + s


def content_lines(content: str) -> List[str]:
    """
    Lines of caller-supplied replacement content. A trailing newline does not
    add an empty line; an empty string yields no lines.
    """
    content = content.replace(CRLF, LF)
    lines, _eol = split_verbatim(content)
    return lines


def normalize_whitespace(line: str) -> str:
    return " ".join(line.split())
