from typing import Any, Dict, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from unipatch.patch import create_diff
from unipatch.settings import ToolSpec
from unipatch.tools import base as tools_base

if TYPE_CHECKING:
    from unipatch.project import Project


class CreateDiffArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    original: Optional[str] = None
    original_path: Optional[str] = Field(default=None, alias="originalPath")
    modified: Optional[str] = None
    modified_path: Optional[str] = Field(default=None, alias="modifiedPath")
    context_lines: Optional[int] = Field(default=None, ge=0, alias="contextLines")

    @model_validator(mode="after")
    def _one_source_per_side(self) -> "CreateDiffArgs":
        for side in ("original", "modified"):
            text = getattr(self, side)
            path = getattr(self, f"{side}_path")
            if (text is None) == (path is None):
                raise ValueError(f"Give exactly one of {side} or {side}Path")
        return self


@tools_base.ToolFactory.register("create_diff")
class CreateDiffTool(tools_base.BaseTool):
    name = "create_diff"

    async def run(self, spec: ToolSpec, args: Any) -> tools_base.ToolTextResponse:
        try:
            parsed = self.parse_args(CreateDiffArgs, args)
            ops = self.prj.file_ops()
            original = parsed.original if parsed.original_path is None else ops.open(parsed.original_path)
            modified = parsed.modified if parsed.modified_path is None else ops.open(parsed.modified_path)
        except tools_base.TOOL_ERRORS as e:
            return tools_base.error_response(e)

        context_lines = parsed.context_lines
        if context_lines is None:
            context_lines = int(spec.config.get("context_lines", self.prj.settings.diff.context_lines))
        diff = create_diff(
            original or "",
            modified or "",
            context_lines,
            from_file=parsed.original_path or "original",
            to_file=parsed.modified_path or "modified",
        )
        if not diff:
            return tools_base.ToolTextResponse(text="No differences.")
        return tools_base.ToolTextResponse(text=diff)

    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": (
                "Produce a unified diff between two texts or project files. "
                "Each side is given inline or as a project-relative path."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "original": {"type": "string", "description": "Original text."},
                    "originalPath": {"type": "string", "description": "Project file holding the original text."},
                    "modified": {"type": "string", "description": "Modified text."},
                    "modifiedPath": {"type": "string", "description": "Project file holding the modified text."},
                    "contextLines": {
                        "type": "integer",
                        "minimum": 0,
                        "description": "Unchanged lines shown around each change (default 3).",
                    },
                },
                "additionalProperties": False,
            },
        }
