from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
import json
import os
import re

import json5  # type: ignore
import yaml

from .models import Settings, VAR_PATTERN

ENV_PREFIX = "env:"
# Built-in placeholder for the Unity project root
PROJECT_VAR = "project"

_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json5.loads,
    ".json5": json5.loads,
    ".jsonc": json5.loads,
}


class ConfigScope:
    """
    Expands placeholders in a parsed config tree.

    '${NAME}' reads a variable from the 'variables' section, falling back to
    the built-in '${project}'. '${env:NAME}' reads the environment. A string
    that is a single placeholder takes the value with its type (so
    `context_lines: ${CONTEXT}` stays an int); inside longer strings values
    are substituted as text. Unknown names are left as written and '$${'
    stands for a literal '${'.

    Variables may reference each other; they are resolved on first use.
    """

    def __init__(self, variables: Dict[str, Any], builtins: Dict[str, Any]) -> None:
        self._variables = variables
        self._builtins = builtins
        self._resolved: Dict[str, Any] = {}
        self._pending: List[str] = []

    def resolve_all(self) -> Dict[str, Any]:
        for name in self._variables:
            self.lookup(name)
        return dict(self._resolved)

    def lookup(self, name: str) -> Tuple[bool, Any]:
        if name.startswith(ENV_PREFIX):
            value = os.environ.get(name[len(ENV_PREFIX):])
            return value is not None, value
        if name in self._resolved:
            return True, self._resolved[name]
        if name not in self._variables:
            if name in self._builtins:
                return True, self._builtins[name]
            return False, None
        if name in self._pending:
            chain = self._pending[self._pending.index(name):] + [name]
            raise ValueError(f"Config variable cycle: {' -> '.join(chain)}")
        self._pending.append(name)
        try:
            value = self.expand(self._variables[name])
        finally:
            self._pending.pop()
        self._resolved[name] = value
        return True, value

    def expand(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: self.expand(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.expand(v) for v in value]
        if not isinstance(value, str):
            return value
        single = VAR_PATTERN.fullmatch(value)
        if single is not None:
            found, resolved = self.lookup(single.group(1))
            return resolved if found else value
        return VAR_PATTERN.sub(self._as_text, value).replace("$${", "${")

    def _as_text(self, m: "re.Match[str]") -> str:
        found, value = self.lookup(m.group(1))
        if not found:
            return m.group(0)
        if value is None:
            return ""
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)


def read_config(path: Path) -> Dict[str, Any]:
    """Parse a YAML or JSON5 config file; an empty file gives an empty mapping."""
    parse = _PARSERS.get(path.suffix.lower())
    if parse is None:
        raise ValueError(f"Unsupported config file extension: {path.suffix or path.name}")
    data = parse(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Root configuration must be a mapping/object")
    return data


def load_settings(
    path: Union[str, Path], *, project_root: Optional[Union[str, Path]] = None
) -> Settings:
    """
    Load settings from `path` with placeholders expanded.

    `project_root` feeds '${project}'; it defaults to the directory holding
    the config's '.unipatch' folder, or the config's own directory.
    """
    path = Path(path)
    data = read_config(path)

    variables = data.pop("variables", None) or {}
    if not isinstance(variables, dict):
        raise ValueError("'variables' must be a mapping of NAME: value")

    if project_root is None:
        parent = path.parent
        project_root = parent.parent if parent.name == ".unipatch" else parent
    scope = ConfigScope(variables, {PROJECT_VAR: Path(project_root).as_posix()})
    scope.resolve_all()
    return Settings.model_validate(scope.expand(data))
