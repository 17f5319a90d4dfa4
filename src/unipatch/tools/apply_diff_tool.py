from typing import Any, Dict, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from unipatch.patch import apply_diff_to_file
from unipatch.patch.summary import format_patch_result
from unipatch.settings import ToolSpec
from unipatch.tools import base as tools_base

if TYPE_CHECKING:
    from unipatch.project import Project


class ApplyDiffArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path: str = Field(min_length=1)
    diff: str = Field(min_length=1)
    dry_run: Optional[bool] = Field(default=None, alias="dryRun")
    ignore_whitespace: Optional[bool] = Field(default=None, alias="ignoreWhitespace")
    fuzzy: Optional[int] = Field(default=None, ge=0, le=100)
    create_backup: Optional[bool] = Field(default=None, alias="createBackup")


@tools_base.ToolFactory.register("apply_diff")
class ApplyDiffTool(tools_base.BaseTool):
    """
    Apply a unified diff to a single file. Headers are optional; the target
    is always `path`.
    """

    name = "apply_diff"

    async def run(self, spec: ToolSpec, args: Any) -> tools_base.ToolTextResponse:
        settings = self.prj.settings
        try:
            parsed = self.parse_args(ApplyDiffArgs, args)
            options = settings.patch_options(
                dry_run=parsed.dry_run,
                ignore_whitespace=parsed.ignore_whitespace,
                fuzzy=parsed.fuzzy,
            )
            backup = (
                settings.workspace.create_backup
                if parsed.create_backup is None
                else parsed.create_backup
            )
            async with self.prj.locks.hold(parsed.path):
                result = apply_diff_to_file(
                    parsed.path,
                    parsed.diff,
                    self.prj.file_ops(),
                    options,
                    backup=backup,
                    backup_suffix=settings.workspace.backup_suffix,
                    strict=settings.diff.strict,
                )
        except tools_base.TOOL_ERRORS as e:
            return tools_base.error_response(e)
        return tools_base.ToolTextResponse(text=format_patch_result(parsed.path, result))

    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": (
                "Apply a unified diff (@@ -l,s +l,s @@ hunks with ' ', '-', '+' lines) to one file. "
                "Hunks are located near their declared line even if the file shifted. "
                "If any hunk fails nothing is written."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {"type": "string", "description": "File path relative to the project root."},
                    "diff": {"type": "string", "description": "Unified diff text."},
                    "dryRun": {"type": "boolean", "description": "Preview the change without writing."},
                    "ignoreWhitespace": {
                        "type": "boolean",
                        "description": "Match context lines ignoring whitespace differences.",
                    },
                    "fuzzy": {
                        "type": "integer",
                        "minimum": 0,
                        "maximum": 100,
                        "description": "Accept approximate context matches at this similarity percent (0 disables).",
                    },
                    "createBackup": {"type": "boolean", "description": "Keep a copy of the original file."},
                },
                "required": ["path", "diff"],
                "additionalProperties": False,
            },
        }
