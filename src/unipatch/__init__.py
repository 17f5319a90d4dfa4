from .patch import (  # noqa: F401
    ApplyOptions,
    PatchResult,
    PatchSpec,
    apply_patches,
    apply_unified_diff,
    create_diff,
    parse_diff,
)
