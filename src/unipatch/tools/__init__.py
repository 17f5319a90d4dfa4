# Re-export the base tool interfaces and registry
from .base import (  # noqa: F401
    BaseTool,
    ToolFactory,
    ToolTextResponse,
    error_response,
    register_tool,
    unregister_tool,
    get_tool,
    get_all_tools,
)

# Importing the modules registers the tools
from . import (  # noqa: F401
    apply_diff_tool,
    apply_patch_tool,
    create_diff_tool,
    update_script_tool,
    validate_diff_tool,
)
