from __future__ import annotations

from typing import List, Optional

from .models import PatchError

# Mismatched lines listed under a hunk failure
MAX_LISTED_MISMATCHES = 5


class DiffError(ValueError):
    """Any problem detected while parsing, locating or applying a patch."""

    def __init__(
        self,
        msg: str,
        *,
        patch_index: Optional[int] = None,
        line: Optional[int] = None,
        hint: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> None:
        super().__init__(msg)
        self.msg = msg
        self.patch_index = patch_index
        self.line = line
        self.hint = hint
        self.filename = filename

    def __str__(self) -> str:
        prefix = ""
        if self.patch_index is not None:
            prefix = f"patch #{self.patch_index + 1}: "
        return f"{prefix}{self.msg}"

    def details(self) -> List[str]:
        """Extra per-line diagnostics shown under the message."""
        return []

    def to_report(self) -> PatchError:
        return PatchError(
            msg=str(self),
            line=self.line,
            hint=self.hint,
            filename=self.filename,
            details=self.details(),
        )


class MalformedDiffError(DiffError):
    """The diff text has an unparsable header or a hunk body that disagrees with it."""


class PatchNotFoundError(DiffError):
    """The locator found no place for the edit."""


class AmbiguousPatchError(DiffError):
    """Several places match and the edit did not say which one."""

    def __init__(self, msg: str, *, candidates: List[int], **kwargs) -> None:
        super().__init__(msg, **kwargs)
        # 1-based line numbers of every matching location
        self.candidates = list(candidates)


class ContextValidationError(DiffError):
    """Lines around the located span differ from the expected context."""

    def __init__(
        self,
        msg: str,
        *,
        expected: List[str],
        actual: List[Optional[str]],
        **kwargs,
    ) -> None:
        super().__init__(msg, **kwargs)
        self.expected = list(expected)
        self.actual = list(actual)


class OverlappingPatchError(DiffError):
    """Two edits resolved against the same text claim overlapping lines."""


class UnsafePathError(DiffError):
    """A path points outside the project or outside the editable roots."""


class HunkMismatchError(PatchNotFoundError):
    """A diff hunk's old side is not in the file; carries the closest run."""

    def __init__(
        self,
        msg: str,
        *,
        expected: List[str],
        actual: List[Optional[str]],
        closest_line: int,
        similarity: float,
        **kwargs,
    ) -> None:
        super().__init__(msg, **kwargs)
        self.expected = list(expected)
        self.actual = list(actual)
        # 1-based start of the run most similar to `expected`
        self.closest_line = closest_line
        self.similarity = similarity

    def details(self) -> List[str]:
        out: List[str] = []
        for k, (exp, act) in enumerate(zip(self.expected, self.actual)):
            if exp == act:
                continue
            if len(out) == MAX_LISTED_MISMATCHES:
                out.append("...")
                break
            found = "end of file" if act is None else repr(act)
            out.append(f"line {self.closest_line + k}: expected {exp!r}, found {found}")
        return out
