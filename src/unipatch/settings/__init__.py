from .models import (  # noqa: F401
    DEFAULT_CONFIG_RELPATH,
    DiffSettings,
    LoggingSettings,
    LogLevel,
    PatchSettings,
    Settings,
    ToolSpec,
    WorkspaceSettings,
)
from .loader import load_settings  # noqa: F401
