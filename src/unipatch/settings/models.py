from typing import Any, Dict, List, Optional, Final
from enum import Enum
import re

from pydantic import BaseModel, Field, field_validator, model_validator

from unipatch.patch.models import ApplyOptions, Ordering


# Variable replacement pattern.
# Supports:
#   - ${NAME}
#   - ${env:NAME}
# Ignores '$${NAME}' so it can be used to escape a literal '${NAME}'.
VAR_PATTERN = re.compile(
    r"(?<!\$)\$\{([A-Za-z_][A-Za-z0-9_]*(?::[A-Za-z_][A-Za-z0-9_]*)?)\}"
)

DEFAULT_CONFIG_RELPATH: Final[str] = ".unipatch/config.yaml"


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class ToolSpec(BaseModel):
    """
    Per-tool configuration from Settings.tools. A bare string is shorthand
    for {"name": <string>}.
    """

    name: str
    enabled: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"name": v}
        if isinstance(v, dict):
            name = v.get("name")
            if not isinstance(name, str) or not name:
                raise ValueError("Tool spec must include non-empty 'name'")
            return {
                "name": name,
                "enabled": v.get("enabled", True),
                "config": v.get("config", {}) or {},
            }
        return v


class LoggingSettings(BaseModel):
    # Default level for our primary loggers if not overridden.
    default_level: LogLevel = LogLevel.info
    # Mapping of logger name -> level override (e.g., {"asyncio": "debug"})
    enabled_loggers: Dict[str, LogLevel] = Field(default_factory=dict)
    # Optional file receiving a copy of every log line
    log_file: Optional[str] = None


class DiffSettings(BaseModel):
    # Context lines around each change in generated diffs
    context_lines: int = Field(default=3, ge=0)
    # Reject hunks whose header counts disagree with their body
    strict: bool = True


class PatchSettings(BaseModel):
    validate_context: bool = True
    ordering: Ordering = Ordering.sequential
    ignore_whitespace: bool = False
    # Minimum similarity percent for fuzzy hunk placement; 0 disables it
    fuzzy: int = Field(default=0, ge=0, le=100)
    preview_context: int = Field(default=2, ge=0)


class WorkspaceSettings(BaseModel):
    # Top-level project folders the assistant may edit; empty allows any
    allowed_roots: List[str] = Field(default_factory=lambda: ["Assets", "Packages"])
    create_backup: bool = False
    backup_suffix: str = ".backup"
    encoding: str = "utf-8"

    @field_validator("allowed_roots")
    @classmethod
    def _validate_roots(cls, v: List[str]) -> List[str]:
        for root in v:
            norm = root.replace("\\", "/").strip("/")
            if not norm or "/" in norm or norm in (".", ".."):
                raise ValueError(f"allowed_roots entries must be single folder names: {root!r}")
        return [r.replace("\\", "/").strip("/") for r in v]


class Settings(BaseModel):
    diff: DiffSettings = Field(default_factory=DiffSettings)
    patch: PatchSettings = Field(default_factory=PatchSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    logging: Optional[LoggingSettings] = Field(default=None)
    tools: List[ToolSpec] = Field(default_factory=list)

    def tool_spec(self, name: str) -> ToolSpec:
        """Configured spec for a tool, or an enabled default."""
        for spec in self.tools:
            if spec.name == name:
                return spec
        return ToolSpec(name=name)

    def patch_options(self, **overrides: Any) -> ApplyOptions:
        """
        ApplyOptions from the patch settings. Overrides set to None are
        ignored, so optional tool arguments can be passed straight through.
        """
        values: Dict[str, Any] = self.patch.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ApplyOptions.model_validate(values)
