"""Closed tool registry.

Tools are registered once at startup and resolved by name at call time.
Unknown names are rejected with ``UnknownToolError`` rather than ignored.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, Iterable, List, Optional

from orchestrator.errors import ConfigurationError, ToolExecutionError, UnknownToolError

logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """Per-invocation context handed to tool implementations.

    Attributes:
        thread_id: Conversation the call belongs to.
        user_id: Caller identity, used by integrations to pick credentials.
        call_id: Id of the tool call being executed.
        result_store: Store holding evicted tool results for this engine.
        resource_handles: Handles recovered earlier in the conversation.
    """

    thread_id: str
    user_id: str
    call_id: str
    result_store: Any = None
    resource_handles: Dict[str, str] = field(default_factory=dict)


ToolInvokeFn = Callable[[dict, ToolContext], Coroutine[Any, Any, Any]]


@dataclass
class RegisteredTool:
    """A named external capability the model may call.

    Attributes:
        name: Tool name as exposed to the model.
        description: Human-readable tool description.
        input_schema: JSON schema for the call arguments.
        invoke_fn: Async implementation taking ``(args, context)``.
        cacheable: Whether successful results may be reused within the cache TTL.
        evict_results: Whether oversized results are moved out-of-band.
    """

    name: str
    description: str
    invoke_fn: ToolInvokeFn = field(repr=False)
    input_schema: dict = field(default_factory=lambda: {"type": "object", "properties": {}})
    cacheable: bool = True
    evict_results: bool = True
    _schema_validator: Optional[Callable[[dict], None]] = field(
        default=None, init=False, repr=False
    )

    def __post_init__(self):
        """Compile the input schema once; an invalid schema is a startup error."""
        from jsonschema import validators
        from jsonschema.exceptions import SchemaError

        validator_cls = validators.validator_for(self.input_schema)
        try:
            validator_cls.check_schema(self.input_schema)
        except SchemaError as exc:
            raise ConfigurationError(
                f"Tool '{self.name}' has an invalid input schema: {exc.message}"
            ) from exc
        self._schema_validator = validator_cls(self.input_schema).validate

    def validate_input(self, args: Any) -> None:
        """Validate call arguments against the input schema.

        Raises:
            ToolExecutionError: If the arguments do not match.
        """
        if not isinstance(args, dict):
            raise ToolExecutionError(
                f"Tool '{self.name}' expects a JSON object input.",
                tool_name=self.name,
                code="TOOL_INPUT_SCHEMA_VIOLATION",
            )

        from jsonschema.exceptions import ValidationError

        try:
            self._schema_validator(args)
        except ValidationError as exc:
            raise ToolExecutionError(
                f"Tool input validation failed for '{self.name}': {exc.message}",
                tool_name=self.name,
                code="TOOL_INPUT_SCHEMA_VIOLATION",
                details={"path": list(exc.absolute_path)},
            ) from exc

    async def invoke(self, args: dict, context: ToolContext) -> Any:
        """Validate arguments and run the tool.

        Raises:
            ToolExecutionError: On invalid input or when the implementation fails.
        """
        self.validate_input(args)
        try:
            return await self.invoke_fn(args, context)
        except ToolExecutionError:
            raise
        except Exception as exc:
            raise ToolExecutionError(
                f"Tool '{self.name}' failed: {type(exc).__name__}: {exc}",
                tool_name=self.name,
                details={"exception_type": type(exc).__name__},
            ) from exc

    def to_tool_schema(self) -> dict:
        """Render the tool in the function-calling format accepted by ``bind_tools``."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolRegistry:
    """Name -> tool mapping resolved at startup."""

    def __init__(self, tools: Optional[Iterable[RegisteredTool]] = None):
        """Register the given tools; duplicate names are a configuration error."""
        self._tools: Dict[str, RegisteredTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: RegisteredTool) -> None:
        """Add a tool to the registry."""
        if tool.name in self._tools:
            raise ConfigurationError(f"Tool '{tool.name}' is already registered.")
        self._tools[tool.name] = tool
        logger.debug("Registered tool", extra={"tool_name": tool.name})

    def get(self, name: str) -> RegisteredTool:
        """Resolve a tool by name.

        Raises:
            UnknownToolError: If no tool with that name is registered.
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name, available=self.names())
        return tool

    def has(self, name: str) -> bool:
        """Return whether a tool with this name is registered."""
        return name in self._tools

    def names(self) -> List[str]:
        """Registered tool names in registration order."""
        return list(self._tools)

    def schemas_for(self, names: Iterable[str]) -> List[dict]:
        """Function-calling schemas for the registered subset of ``names``."""
        schemas = []
        for name in names:
            tool = self._tools.get(name)
            if tool is None:
                logger.warning(
                    "Tool not registered; skipping binding", extra={"tool_name": name}
                )
                continue
            schemas.append(tool.to_tool_schema())
        return schemas

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def create_tool(
    name: str,
    description: str,
    invoke_fn: ToolInvokeFn,
    input_schema: Optional[dict] = None,
    **kwargs: Any,
) -> RegisteredTool:
    """Create a RegisteredTool.

    Args:
        name: Tool name.
        description: Tool description.
        invoke_fn: Async function that invokes the tool.
        input_schema: JSON schema for tool inputs (defaults to an empty object schema).
        **kwargs: ``cacheable`` or ``evict_results``.

    Returns:
        RegisteredTool bound to the invoke function.
    """
    schema = input_schema or {"type": "object", "properties": {}}
    return RegisteredTool(
        name=name,
        description=description,
        invoke_fn=invoke_fn,
        input_schema=schema,
        **kwargs,
    )
