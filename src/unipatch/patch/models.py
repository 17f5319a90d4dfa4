from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


DEV_NULL = "/dev/null"


# Parsed diff structures


class LineTag(str, Enum):
    context = "context"
    added = "added"
    removed = "removed"


@dataclass
class HunkLine:
    tag: LineTag
    text: str


@dataclass
class Hunk:
    old_start: int
    old_length: int
    new_start: int
    new_length: int
    lines: List[HunkLine] = field(default_factory=list)
    # Free text after the closing @@ (usually a class or method signature)
    section: str = ""
    old_missing_eol: bool = False
    new_missing_eol: bool = False
    # Line number of the @@ header inside the diff text (1-based)
    header_line: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def old_lines(self) -> List[str]:
        return [l.text for l in self.lines if l.tag != LineTag.added]

    def new_lines(self) -> List[str]:
        return [l.text for l in self.lines if l.tag != LineTag.removed]

    def counted_lengths(self) -> Tuple[int, int]:
        """(old, new) lengths as counted from the body."""
        ctx = sum(1 for l in self.lines if l.tag == LineTag.context)
        removed = sum(1 for l in self.lines if l.tag == LineTag.removed)
        added = sum(1 for l in self.lines if l.tag == LineTag.added)
        return ctx + removed, ctx + added

    def header(self) -> str:
        section = f" {self.section}" if self.section else ""
        return (
            f"@@ -{self.old_start},{self.old_length} "
            f"+{self.new_start},{self.new_length} @@{section}"
        )


@dataclass
class FileDiff:
    old_path: Optional[str] = None
    new_path: Optional[str] = None
    hunks: List[Hunk] = field(default_factory=list)

    @property
    def is_new_file(self) -> bool:
        return self.old_path == DEV_NULL

    @property
    def is_deleted(self) -> bool:
        return self.new_path == DEV_NULL

    @property
    def path(self) -> Optional[str]:
        if self.new_path and self.new_path != DEV_NULL:
            return self.new_path
        if self.old_path and self.old_path != DEV_NULL:
            return self.old_path
        return None


@dataclass(frozen=True)
class LineSpan:
    """
    1-based inclusive line span. An empty span (end == start - 1) is an
    insertion point before line `start`.
    """

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def is_empty(self) -> bool:
        return self.length == 0

    def to_slice(self) -> slice:
        return slice(self.start - 1, self.end)

    def __str__(self) -> str:
        if self.is_empty:
            return f"before line {self.start}"
        if self.length == 1:
            return f"line {self.start}"
        return f"lines {self.start}-{self.end}"


@dataclass
class HunkMatch:
    span: LineSpan
    # Distance between the located and the declared start line
    offset: int = 0
    fuzzy: bool = False
    score: float = 1.0


@dataclass
class PatchError:
    msg: str
    line: Optional[int] = None
    hint: Optional[str] = None
    filename: Optional[str] = None
    details: List[str] = field(default_factory=list)


class FileApplyStatus(str, Enum):
    Create = "created"
    Update = "updated"
    Delete = "deleted"
    Unchanged = "unchanged"
    Failed = "failed"


# Patch specs


class MatchMode(str, Enum):
    exact = "exact"
    case_insensitive = "case_insensitive"
    regex = "regex"


_MATCH_MODE_ALIASES: Dict[str, str] = {
    "case-insensitive": "case_insensitive",
    "caseinsensitive": "case_insensitive",
    "ignore_case": "case_insensitive",
    # Older clients called case-insensitive matching "fuzzy"
    "fuzzy": "case_insensitive",
}


class LineRangeLocator(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["lines"] = "lines"
    start_line: int = Field(ge=1, alias="startLine")
    end_line: Optional[int] = Field(default=None, alias="endLine")

    @model_validator(mode="after")
    def _check_range(self) -> "LineRangeLocator":
        if self.end_line is not None and self.end_line < self.start_line - 1:
            raise ValueError(
                f"end_line ({self.end_line}) must be >= start_line - 1 ({self.start_line - 1})"
            )
        return self

    @property
    def last_line(self) -> int:
        return self.start_line if self.end_line is None else self.end_line


class PatternLocator(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["pattern"] = "pattern"
    search_pattern: str = Field(min_length=1, alias="searchPattern")
    match_mode: MatchMode = Field(default=MatchMode.exact, alias="matchMode")
    # 1-based; None means "exactly one match is expected"
    occurrence: Optional[int] = Field(default=None, ge=1)

    @field_validator("match_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: Any) -> Any:
        if isinstance(v, str):
            key = v.strip().lower()
            return _MATCH_MODE_ALIASES.get(key, key)
        return v

    @model_validator(mode="after")
    def _check_regex(self) -> "PatternLocator":
        if self.match_mode == MatchMode.regex:
            try:
                re.compile(self.search_pattern)
            except re.error as e:
                raise ValueError(f"Invalid regex {self.search_pattern!r}: {e}") from e
        return self


class ContentLocator(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["content"] = "content"
    old_content: str = Field(min_length=1, alias="oldContent")
    occurrence: Optional[int] = Field(default=None, ge=1)
    # Preferred location when the block occurs more than once
    near_line: Optional[int] = Field(default=None, ge=0, alias="nearLine")


Locator = Annotated[
    Union[LineRangeLocator, PatternLocator, ContentLocator],
    Field(discriminator="kind"),
]

# Flat (assistant-facing) keys accepted by PatchSpec, grouped by locator kind.
# The first key of each group selects the kind.
_FLAT_LOCATOR_KEYS: Dict[str, Tuple[Tuple[str, Tuple[str, ...]], ...]] = {
    "lines": (
        ("start_line", ("start_line", "startLine")),
        ("end_line", ("end_line", "endLine")),
    ),
    "pattern": (
        ("search_pattern", ("search_pattern", "searchPattern")),
        ("match_mode", ("match_mode", "matchMode")),
    ),
    "content": (
        ("old_content", ("old_content", "oldContent")),
        ("near_line", ("near_line", "nearLine")),
    ),
}


def _pop_first(data: Dict[str, Any], keys: Tuple[str, ...]) -> Any:
    value = None
    for key in keys:
        if key in data:
            candidate = data.pop(key)
            if value is None:
                value = candidate
    return value


class PatchSpec(BaseModel):
    """
    One requested edit: the text to insert plus exactly one locator.

    Accepts either an explicit `locator` or the flat form used by assistants:
    {"startLine": 3, "newContent": "..."}, {"searchPattern": "Debug.Log", ...}
    or {"oldContent": "...", ...}.
    """

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    locator: Locator
    new_content: str = Field(alias="newContent")
    context_before: List[str] = Field(default_factory=list, alias="contextBefore")
    context_after: List[str] = Field(default_factory=list, alias="contextAfter")
    validate_context: bool = Field(default=True, alias="validateContext")

    @model_validator(mode="before")
    @classmethod
    def _from_flat(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "locator" in data:
            return data
        data = dict(data)
        occurrence = _pop_first(data, ("occurrence",))

        groups: Dict[str, Dict[str, Any]] = {}
        for kind, keys in _FLAT_LOCATOR_KEYS.items():
            values: Dict[str, Any] = {}
            for field_name, aliases in keys:
                value = _pop_first(data, aliases)
                if value is not None:
                    values[field_name] = value
            primary = keys[0][0]
            # Empty old content alongside another mode is treated as absent
            if kind == "content" and values.get(primary) == "":
                values.pop(primary)
            if values:
                if primary not in values:
                    extra = ", ".join(sorted(values))
                    raise ValueError(
                        f"{extra} given without {primary}; it only applies to {kind} patches"
                    )
                groups[kind] = values

        if not groups:
            raise ValueError(
                "Patch must specify one of start_line, search_pattern or old_content"
            )
        if len(groups) > 1:
            given = ", ".join(_FLAT_LOCATOR_KEYS[k][0][0] for k in groups)
            raise ValueError(
                f"Patch must specify exactly one locator; got {given}"
            )

        kind, locator = next(iter(groups.items()))
        if occurrence is not None:
            if kind == "lines":
                raise ValueError("occurrence does not apply to line-range patches")
            locator["occurrence"] = occurrence
        locator["kind"] = kind
        data["locator"] = locator
        return data

    @classmethod
    def at_lines(
        cls, start_line: int, end_line: Optional[int] = None, *, new_content: str, **kwargs
    ) -> "PatchSpec":
        return cls(
            locator=LineRangeLocator(start_line=start_line, end_line=end_line),
            new_content=new_content,
            **kwargs,
        )

    @classmethod
    def at_pattern(
        cls,
        search_pattern: str,
        *,
        new_content: str,
        match_mode: MatchMode = MatchMode.exact,
        occurrence: Optional[int] = None,
        **kwargs,
    ) -> "PatchSpec":
        return cls(
            locator=PatternLocator(
                search_pattern=search_pattern,
                match_mode=match_mode,
                occurrence=occurrence,
            ),
            new_content=new_content,
            **kwargs,
        )

    @classmethod
    def at_content(
        cls,
        old_content: str,
        *,
        new_content: str,
        occurrence: Optional[int] = None,
        near_line: Optional[int] = None,
        **kwargs,
    ) -> "PatchSpec":
        return cls(
            locator=ContentLocator(
                old_content=old_content, occurrence=occurrence, near_line=near_line
            ),
            new_content=new_content,
            **kwargs,
        )

    def describe(self) -> str:
        loc = self.locator
        if isinstance(loc, LineRangeLocator):
            return f"lines {loc.start_line}-{loc.last_line}"
        if isinstance(loc, PatternLocator):
            occ = f" (occurrence {loc.occurrence})" if loc.occurrence else ""
            return f"{loc.match_mode.value} pattern {loc.search_pattern!r}{occ}"
        first = loc.old_content.splitlines()[0] if loc.old_content.strip() else ""
        return f"content block starting {first[:40]!r}"


# Options and results


class Ordering(str, Enum):
    # Each edit sees the effects of the edits before it
    sequential = "sequential"
    # All edits are resolved against the original text, then applied bottom-up
    independent = "independent"


class ApplyOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dry_run: bool = Field(default=False, alias="dryRun")
    validate_context: bool = Field(default=True, alias="validateContext")
    ordering: Ordering = Ordering.sequential
    ignore_whitespace: bool = Field(default=False, alias="ignoreWhitespace")
    # Minimum per-line similarity (percent) for fuzzy hunk placement; 0 disables
    fuzzy: int = Field(default=0, ge=0, le=100)
    preview_context: int = Field(default=2, ge=0, alias="previewContext")


class PatchOutcome(BaseModel):
    index: int
    success: bool = True
    start_line: Optional[int] = None
    end_line: Optional[int] = None
    lines_added: int = 0
    lines_removed: int = 0
    offset: int = 0
    fuzzy: bool = False
    preview: str = ""
    error: Optional[str] = None


class PatchResult(BaseModel):
    text: str
    preview: str
    changed: bool = False
    lines_added: int = 0
    lines_removed: int = 0
    dry_run: bool = False
    outcomes: List[PatchOutcome] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def net_delta(self) -> int:
        return self.lines_added - self.lines_removed


class HunkConflict(BaseModel):
    hunk_index: int
    line: int
    description: str
    # Old side of the hunk next to the closest lines found in the file
    expected: List[str] = Field(default_factory=list)
    actual: List[Optional[str]] = Field(default_factory=list)
    details: List[str] = Field(default_factory=list)
    hint: Optional[str] = None


class ValidationReport(BaseModel):
    valid: bool
    applicable: bool
    conflicts: List[HunkConflict] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class FileResult(BaseModel):
    path: str
    status: FileApplyStatus
    result: Optional[PatchResult] = None
    error: Optional[PatchError] = None


class PatchSetResult(BaseModel):
    success: bool
    files: List[FileResult] = Field(default_factory=list)
    written: List[str] = Field(default_factory=list)
    rolled_back: List[str] = Field(default_factory=list)

    @property
    def failed(self) -> List[FileResult]:
        return [f for f in self.files if f.status == FileApplyStatus.Failed]
