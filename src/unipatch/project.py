from pathlib import Path
from typing import Optional, Union

from .logger import configure_logging, logger
from .patch import FileSystemPatchFileOps, PathLocks
from .settings import DEFAULT_CONFIG_RELPATH, Settings
from .settings.loader import load_settings

# A Unity project root holds both of these folders
UNITY_MARKERS = ("Assets", "ProjectSettings")


class Project:
    def __init__(
        self,
        base_path: Path,
        settings: Optional[Settings] = None,
        config_relpath: Union[str, Path] = DEFAULT_CONFIG_RELPATH,
    ):
        self.base_path: Path = Path(base_path)
        self.config_relpath: Path = Path(config_relpath)
        self.settings: Settings = settings or Settings()
        # Serialises concurrent edits of the same file across tool calls
        self.locks: PathLocks = PathLocks()

    @property
    def config_path(self) -> Path:
        # Do not resolve symlinks; return the composed path as-is
        return self.base_path / self.config_relpath

    @property
    def is_unity_project(self) -> bool:
        return all((self.base_path / name).is_dir() for name in UNITY_MARKERS)

    @classmethod
    def from_base_path(
        cls, base_path: Union[str, Path], *, search_ancestors: bool = True
    ) -> "Project":
        return init_project(base_path, search_ancestors=search_ancestors)

    def file_ops(self) -> FileSystemPatchFileOps:
        ws = self.settings.workspace
        return FileSystemPatchFileOps(
            self.base_path,
            allowed_roots=tuple(ws.allowed_roots),
            encoding=ws.encoding,
        )


def _find_project_root_with_config(start: Path, rel_config: Path) -> Optional[Path]:
    """
    Walk upwards from 'start' to filesystem root looking for rel_config
    (e.g., '.unipatch/config.yaml'). Returns the directory that contains it,
    or None.
    """
    current = start
    while True:
        candidate = current / rel_config
        if candidate.is_file():
            return current
        if current.parent == current:
            # Reached filesystem root
            return None
        current = current.parent


def init_project(
    base_path: Union[str, Path],
    config_relpath: Union[str, Path] = DEFAULT_CONFIG_RELPATH,
    *,
    search_ancestors: bool = True,
) -> Project:
    """
    Initialize a Project by:
    1) Searching upwards for an existing .unipatch/config.yaml (nearest ancestor) if search_ancestors is True.
    2) Otherwise using the start directory with default settings.
    Nothing is written to disk.
    """
    start_path = Path(base_path)
    # If a file path is provided, start from its parent; otherwise the directory itself.
    start_dir = start_path if start_path.is_dir() else start_path.parent
    start_dir = start_dir.resolve()
    rel = Path(config_relpath)

    if search_ancestors:
        found_base = _find_project_root_with_config(start_dir, rel)
    else:
        found_base = start_dir if (start_dir / rel).is_file() else None

    if found_base is not None:
        base = found_base
        settings = load_settings(base / rel, project_root=base)
    else:
        base = start_dir
        settings = Settings()

    configure_logging(settings.logging)
    project = Project(base_path=base, settings=settings, config_relpath=rel)
    if not project.is_unity_project:
        logger.warning(
            "project root is not a Unity project",
            base_path=str(base),
            missing=[m for m in UNITY_MARKERS if not (base / m).is_dir()],
        )
    return project
