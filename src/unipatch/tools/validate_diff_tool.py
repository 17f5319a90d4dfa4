from typing import Any, Dict, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from unipatch.patch import check_unified_diff
from unipatch.patch.summary import format_validation_report
from unipatch.settings import ToolSpec
from unipatch.tools import base as tools_base

if TYPE_CHECKING:
    from unipatch.project import Project


class ValidateDiffArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path: str = Field(min_length=1)
    diff: str = Field(min_length=1)


@tools_base.ToolFactory.register("validate_diff")
class ValidateDiffTool(tools_base.BaseTool):
    """Check a diff against a file without writing anything."""

    name = "validate_diff"

    async def run(self, spec: ToolSpec, args: Any) -> tools_base.ToolTextResponse:
        try:
            parsed = self.parse_args(ValidateDiffArgs, args)
            async with self.prj.locks.hold(parsed.path):
                ops = self.prj.file_ops()
                text = ops.open(parsed.path) if ops.exists(parsed.path) else ""
            report = check_unified_diff(
                text,
                parsed.diff,
                self.prj.settings.patch_options(),
                strict=self.prj.settings.diff.strict,
            )
        except tools_base.TOOL_ERRORS as e:
            return tools_base.error_response(e)
        return tools_base.ToolTextResponse(text=format_validation_report(parsed.path, report))

    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": (
                "Check that a unified diff is well-formed and applies to a file. "
                "Reports every hunk that does not match. Nothing is written."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path relative to the project root."},
                    "diff": {"type": "string", "description": "Unified diff text."},
                },
                "required": ["path", "diff"],
                "additionalProperties": False,
            },
        }
