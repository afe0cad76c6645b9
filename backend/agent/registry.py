"""Tool registry: the catalog of functions the model may call.

Descriptors are registered once at startup and never change afterwards, so
concurrent turns can read and invoke without locking. Dispatch is a plain
dictionary lookup followed by validation of the arguments against a pydantic
model generated from the descriptor's declared parameters.
"""

from dataclasses import dataclass, field
from typing import Any, Callable

import structlog
from langchain_core.utils.function_calling import convert_to_openai_tool
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

logger = structlog.get_logger(__name__)

# JSON-schema type name -> Python annotation used in the args model
PARAMETER_TYPES: dict[str, type] = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
}

_ARGS_CONFIG = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ToolError(Exception):
    """Base class for every failure surfaced by tool dispatch."""
    pass


class DuplicateToolError(ToolError):
    """A tool with the same name is already registered."""
    pass


class UnknownToolError(ToolError):
    """The requested tool name is not in the registry."""
    pass


class InvalidArgumentError(ToolError):
    """A required argument is missing or cannot be coerced to its declared type."""

    def __init__(self, tool: str, parameter: str, reason: str):
        super().__init__(f"Invalid argument '{parameter}' for tool '{tool}': {reason}")
        self.tool = tool
        self.parameter = parameter
        self.reason = reason


class ToolExecutionError(ToolError):
    """The tool implementation raised. The original exception is kept as ``cause``."""

    def __init__(self, tool: str, cause: BaseException):
        super().__init__(str(cause) or cause.__class__.__name__)
        self.tool = tool
        self.cause = cause


@dataclass(frozen=True)
class ToolParameter:
    """One declared parameter of a tool."""
    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None

    def __post_init__(self):
        if self.type not in PARAMETER_TYPES:
            raise ValueError(f"Unsupported parameter type {self.type!r} for '{self.name}'")


@dataclass(frozen=True)
class ToolDescriptor:
    """Name, description and ordered parameter list of a callable tool.

    ``args_model`` is the pydantic model arguments are validated against; it
    is generated from ``parameters`` and also drives the schema sent to the
    model.
    """
    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = field(default_factory=tuple)
    args_model: type[BaseModel] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        fields: dict[str, Any] = {}
        for param in self.parameters:
            annotation = PARAMETER_TYPES[param.type]
            default = ... if param.required else param.default
            fields[param.name] = (annotation, Field(default, description=param.description))
        model = create_model(self.name, __config__=_ARGS_CONFIG, __doc__=self.description, **fields)
        object.__setattr__(self, "args_model", model)

    def to_schema(self) -> dict[str, Any]:
        """Render as an OpenAI-style tool spec (accepted by LangChain ``bind_tools``)."""
        return convert_to_openai_tool(self.args_model)


ToolInvoker = Callable[..., Any]


class ToolRegistry:
    """Startup-built table of tool descriptors and their implementations."""

    def __init__(self):
        self._tools: dict[str, tuple[ToolDescriptor, ToolInvoker]] = {}

    def register(self, descriptor: ToolDescriptor, invoker: ToolInvoker) -> None:
        """Add a tool.

        Raises:
            DuplicateToolError: If a tool with the same name exists.
        """
        if descriptor.name in self._tools:
            raise DuplicateToolError(f"Tool '{descriptor.name}' is already registered")
        self._tools[descriptor.name] = (descriptor, invoker)
        logger.debug("registry.registered", tool=descriptor.name,
                     params=[p.name for p in descriptor.parameters])

    def describe_all(self) -> tuple[ToolDescriptor, ...]:
        """Return the full catalog in registration order."""
        return tuple(descriptor for descriptor, _ in self._tools.values())

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolDescriptor:
        try:
            return self._tools[name][0]
        except KeyError:
            raise UnknownToolError(
                f"Unknown tool '{name}'. Available tools: {', '.join(self._tools) or 'none'}"
            )

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def bind_arguments(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        """Validate and coerce ``args`` against the descriptor of ``name``.

        Unknown keys are dropped. A null value counts as absent, so optional
        parameters fall back to their defaults.

        Raises:
            UnknownToolError: If ``name`` is not registered.
            InvalidArgumentError: If a required argument is missing or mistyped.
        """
        descriptor = self.get(name)
        supplied = {k: v for k, v in (args or {}).items() if v is not None}

        try:
            validated = descriptor.args_model.model_validate(supplied)
        except ValidationError as e:
            error = e.errors()[0]
            parameter = str(error["loc"][0]) if error["loc"] else ""
            raise InvalidArgumentError(name, parameter, error["msg"]) from e

        ignored = set(supplied) - set(descriptor.args_model.model_fields)
        if ignored:
            logger.debug("registry.ignored_arguments", tool=name, ignored=sorted(ignored))
        return validated.model_dump(exclude_none=True)

    def invoke(self, name: str, args: dict[str, Any] | None = None) -> Any:
        """Validate arguments and call the tool implementation.

        Returns:
            Whatever the implementation returns (dict or str for the financial tools).

        Raises:
            UnknownToolError, InvalidArgumentError: Dispatch-time failures.
            ToolExecutionError: The implementation raised; ``cause`` holds the original.
        """
        bound = self.bind_arguments(name, args)
        _, invoker = self._tools[name]

        try:
            result = invoker(**bound)
        except Exception as e:
            logger.warning("registry.tool_failed", tool=name, error=str(e),
                           error_type=e.__class__.__name__)
            raise ToolExecutionError(name, e) from e

        logger.debug("registry.tool_ok", tool=name)
        return result
