from typing import Any, Dict, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from unipatch.logger import logger
from unipatch.patch import apply_patch_set, parse_file_diffs
from unipatch.patch.summary import format_patch_set
from unipatch.settings import ToolSpec
from unipatch.tools import base as tools_base

if TYPE_CHECKING:
    from unipatch.project import Project


class ApplyPatchArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    patch: str = Field(min_length=1)
    atomic: Optional[bool] = None
    continue_on_error: Optional[bool] = Field(default=None, alias="continueOnError")
    dry_run: Optional[bool] = Field(default=None, alias="dryRun")


@tools_base.ToolFactory.register("apply_patch")
class ApplyPatchTool(tools_base.BaseTool):
    """
    Apply a multi-file unified diff to the project's filesystem under base_path.
    Defaults for atomic / continue_on_error come from the tool config.
    Returns a human-readable summary of applied changes or errors.
    """

    name = "apply_patch"

    async def run(self, spec: ToolSpec, args: Any) -> tools_base.ToolTextResponse:
        settings = self.prj.settings
        config = spec.config or {}
        try:
            parsed = self.parse_args(ApplyPatchArgs, args)
            atomic = bool(config.get("atomic", True)) if parsed.atomic is None else parsed.atomic
            continue_on_error = (
                bool(config.get("continue_on_error", False))
                if parsed.continue_on_error is None
                else parsed.continue_on_error
            )
            options = settings.patch_options(dry_run=parsed.dry_run)
            paths = [
                f.path
                for f in parse_file_diffs(parsed.patch, strict=settings.diff.strict)
                if f.path is not None
            ]
            async with self.prj.locks.hold(*paths):
                result = apply_patch_set(
                    parsed.patch,
                    self.prj.file_ops(),
                    options,
                    atomic=atomic,
                    continue_on_error=continue_on_error,
                    backup=settings.workspace.create_backup,
                    backup_suffix=settings.workspace.backup_suffix,
                    strict=settings.diff.strict,
                )
        except tools_base.TOOL_ERRORS as e:
            return tools_base.error_response(e)

        if result.written:
            logger.info("patch set applied", files=result.written)
        summary = format_patch_set(result, dry_run=options.dry_run)
        return tools_base.ToolTextResponse(text=summary, is_error=not result.success)

    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": (
                "Apply a unified diff touching one or more files ('--- a/path' / '+++ b/path' headers). "
                "Use /dev/null as the old path to create a file and as the new path to delete one. "
                "By default either every file applies or nothing is written."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "patch": {"type": "string", "description": "Multi-file unified diff."},
                    "atomic": {"type": "boolean", "description": "Write nothing unless every file applies (default true)."},
                    "continueOnError": {
                        "type": "boolean",
                        "description": "With atomic=false, keep going after a file fails.",
                    },
                    "dryRun": {"type": "boolean", "description": "Report what would change without writing."},
                },
                "required": ["patch"],
                "additionalProperties": False,
            },
        }
