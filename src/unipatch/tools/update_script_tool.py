from typing import Any, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from unipatch.patch import Ordering, update_file
from unipatch.patch.summary import format_patch_result
from unipatch.settings import ToolSpec
from unipatch.tools import base as tools_base

if TYPE_CHECKING:
    from unipatch.project import Project


class UpdateScriptArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    path: str = Field(min_length=1)
    # Validated one by one so errors name the failing patch
    patches: List[Dict[str, Any]] = Field(min_length=1)
    validate_context: Optional[bool] = Field(default=None, alias="validateContext")
    dry_run: Optional[bool] = Field(default=None, alias="dryRun")
    ordering: Optional[Ordering] = None


PATCH_ITEM_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "description": (
        "One edit. Give exactly one locator: startLine (with optional endLine), "
        "searchPattern, or oldContent."
    ),
    "properties": {
        "startLine": {"type": "integer", "minimum": 1, "description": "First line to replace (1-based)."},
        "endLine": {
            "type": "integer",
            "description": "Last line to replace; defaults to startLine. startLine - 1 inserts before startLine.",
        },
        "searchPattern": {"type": "string", "description": "Text or regex identifying a single line."},
        "matchMode": {
            "type": "string",
            "enum": ["exact", "case_insensitive", "regex"],
            "description": "How searchPattern is matched (default exact substring).",
        },
        "occurrence": {
            "type": "integer",
            "minimum": 1,
            "description": "Which match to use when the pattern or old content occurs more than once.",
        },
        "oldContent": {"type": "string", "description": "Exact block of existing lines to replace."},
        "nearLine": {
            "type": "integer",
            "minimum": 0,
            "description": "Prefer the oldContent match closest to this line.",
        },
        "newContent": {
            "type": "string",
            "description": "Replacement text. An empty string deletes the located lines.",
        },
        "contextBefore": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Lines expected right before the located span.",
        },
        "contextAfter": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Lines expected right after the located span.",
        },
        "validateContext": {"type": "boolean"},
    },
    "required": ["newContent"],
    "additionalProperties": False,
}


@tools_base.ToolFactory.register("update_script_diff")
class UpdateScriptTool(tools_base.BaseTool):
    """
    Apply line-range, pattern or content patches to one script. All patches
    apply or none do.
    """

    name = "update_script_diff"

    async def run(self, spec: ToolSpec, args: Any) -> tools_base.ToolTextResponse:
        try:
            parsed = self.parse_args(UpdateScriptArgs, args)
            options = self.prj.settings.patch_options(
                dry_run=parsed.dry_run,
                validate_context=parsed.validate_context,
                ordering=parsed.ordering,
            )
            async with self.prj.locks.hold(parsed.path):
                result = update_file(parsed.path, parsed.patches, self.prj.file_ops(), options)
        except tools_base.TOOL_ERRORS as e:
            return tools_base.error_response(e)
        return tools_base.ToolTextResponse(text=format_patch_result(parsed.path, result))

    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": (
                "Edit part of a script or shader without resending the whole file. "
                "Patches are applied in order, each against the result of the previous one "
                "(or all against the original with ordering=independent). "
                "If any patch fails nothing is written. Use dryRun to preview."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "path": {
                        "type": "string",
                        "description": "File path relative to the project root, e.g. Assets/Scripts/Player.cs.",
                    },
                    "patches": {"type": "array", "items": PATCH_ITEM_SCHEMA, "minItems": 1},
                    "validateContext": {"type": "boolean", "description": "Check contextBefore/contextAfter (default true)."},
                    "dryRun": {"type": "boolean", "description": "Preview the change without writing."},
                    "ordering": {"type": "string", "enum": [o.value for o in Ordering]},
                },
                "required": ["path", "patches"],
                "additionalProperties": False,
            },
        }
