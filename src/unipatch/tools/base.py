from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Type, TypeVar, TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from unipatch.logger import logger
from unipatch.patch import DiffError
from unipatch.patch.summary import format_error
from unipatch.settings import ToolSpec

if TYPE_CHECKING:
    from unipatch.project import Project


ArgsT = TypeVar("ArgsT", bound=BaseModel)


# Models
class ToolTextResponse(BaseModel):
    text: Optional[str] = None
    # True when the call failed; the text then explains why
    is_error: bool = False


# Global registry of tool name -> tool class
_registry: Dict[str, Type["BaseTool"]] = {}


def register_tool(name: str, tool: Type["BaseTool"]) -> None:
    """Registers a tool class."""
    if name in _registry:
        raise ValueError(f"Tool with name '{name}' already registered.")
    _registry[name] = tool


def unregister_tool(name: str) -> bool:
    """Unregister a tool by name. Returns True if removed, False if not present."""
    return _registry.pop(name, None) is not None


def get_tool(name: str) -> Optional[Type["BaseTool"]]:
    """Gets a tool class by name."""
    return _registry.get(name)


def get_all_tools() -> Dict[str, Type["BaseTool"]]:
    """Returns a copy of the tool registry."""
    return dict(_registry)


class ToolFactory:
    """Decorator-style access to the tool registry."""

    @staticmethod
    def register(name: str) -> Callable[[Type["BaseTool"]], Type["BaseTool"]]:
        def decorator(cls: Type["BaseTool"]) -> Type["BaseTool"]:
            register_tool(name, cls)
            return cls

        return decorator

    @staticmethod
    def get(name: str) -> Optional[Type["BaseTool"]]:
        return get_tool(name)

    @staticmethod
    def unregister(name: str) -> bool:
        return unregister_tool(name)


# Failures reported back to the assistant instead of propagating
TOOL_ERRORS = (DiffError, ValidationError, OSError, UnicodeDecodeError)


def error_response(e: Exception) -> ToolTextResponse:
    """Failure response for an exception raised while serving a tool call."""
    logger.info("tool call failed", error=str(e), kind=type(e).__name__)
    if isinstance(e, DiffError):
        text = format_error(e)
    elif isinstance(e, ValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}"
            for err in e.errors()
        )
        text = f"Invalid arguments: {problems}"
    else:
        text = f"Error: {e}"
    return ToolTextResponse(text=text, is_error=True)


class BaseTool(ABC):
    # Subclasses must set this to a unique string
    name: str

    def __init__(self, prj: "Project") -> None:
        self.prj = prj

    def parse_args(self, model: Type[ArgsT], args: Any) -> ArgsT:
        if isinstance(args, model):
            return args
        if args is None:
            args = {}
        return model.model_validate(args)

    @abstractmethod
    async def run(self, spec: ToolSpec, args: Any) -> ToolTextResponse:
        """
        Execute this tool within the context of the given Project.
        Args:
            spec: ToolSpec including name, enabled flag and optional config for this invocation.
            args: Parsed arguments structure (dict or Pydantic model). Not a JSON string.
        Returns:
            ToolTextResponse with the summary, or the failure when is_error is set.
        """
        pass

    @abstractmethod
    async def openapi_spec(self, spec: ToolSpec) -> Dict[str, Any]:
        """
        Return this tool's definition in OpenAI 'function' tool format,
        using JSON Schema for parameters.
        """
        pass
