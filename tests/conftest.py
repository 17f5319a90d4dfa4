from pathlib import Path

import pytest

from unipatch.project import Project
from unipatch.settings import Settings


@pytest.fixture
def unity_root(tmp_path: Path) -> Path:
    (tmp_path / "Assets" / "Scripts").mkdir(parents=True)
    (tmp_path / "ProjectSettings").mkdir()
    (tmp_path / "Packages").mkdir()
    return tmp_path


@pytest.fixture
def project(unity_root: Path) -> Project:
    return Project(base_path=unity_root, settings=Settings())
