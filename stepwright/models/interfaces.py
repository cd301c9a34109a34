# File: stepwright/models/interfaces.py
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, Field


# Model service interfaces
class ModelOptions(BaseModel):
    """Generation options forwarded to the model service.

    Attributes:
        temperature: Sampling temperature, provider default when ``None``
        max_tokens: Upper bound on generated tokens
        stop_sequences: Sequences that end generation
        extra: Provider-specific options passed through untouched
    """
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: List[str] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)


class IModelProvider(ABC):
    """Interface for the model invocation service.

    The execution engine uses it for planning, for model-delegated steps and
    for the final synthesis. Implementations own transport, authentication and
    provider-specific request formatting; none of that leaks into the engine.

    Cancellation:
        Both methods are awaited inside engine-owned tasks. Implementations
        must let ``asyncio.CancelledError`` propagate so a cancelled run stops
        in-flight requests.
    """

    @abstractmethod
    async def generate(self, prompt: str, options: Optional[ModelOptions] = None) -> str:
        """Generate a complete response for ``prompt``.

        Args:
            prompt: The input prompt. Never empty when called by the engine.
            options: Generation options, provider defaults when ``None``

        Returns:
            Generated text

        Raises:
            Any provider-specific exception. The engine records it as the
            failure of the step (or the planning attempt) that issued the call.
        """
        pass

    @abstractmethod
    def stream(self, prompt: str, options: Optional[ModelOptions] = None) -> AsyncIterator[str]:
        """Stream the response for ``prompt`` as text fragments.

        Implementations are usually async generators. The sequence is finite
        and not restartable; fragments arrive in generation order.
        """
        pass


# Tool interfaces
class ToolResult(BaseModel):
    """Result of a tool execution.

    Attributes:
        success: Whether the tool execution was successful
        output: Textual output of the tool
        error: Error message if execution failed
    """
    success: bool
    output: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, output: str) -> "ToolResult":
        return cls(success=True, output=output)

    @classmethod
    def failure(cls, error: str, output: str = "") -> "ToolResult":
        return cls(success=False, output=output, error=error)


class ToolParameter(BaseModel):
    name: str
    description: str = ""
    type: str = "string"
    required: bool = False


class ToolDescription(BaseModel):
    """What the planner is told about a tool."""
    name: str
    description: str = ""
    parameters: List[ToolParameter] = Field(default_factory=list)

    @classmethod
    def from_schema(cls, schema: Dict[str, Any]) -> "ToolDescription":
        """Build a description from a JSON-Schema style tool schema:
        ``{"name", "description", "parameters": {"properties", "required"}}``."""
        params_schema = schema.get("parameters") or {}
        properties = params_schema.get("properties") or {}
        required = set(params_schema.get("required") or [])
        return cls(
            name=schema["name"],
            description=schema.get("description", ""),
            parameters=[
                ToolParameter(
                    name=name,
                    description=spec.get("description", ""),
                    type=spec.get("type", "string"),
                    required=name in required,
                )
                for name, spec in properties.items()
            ],
        )


class BaseTool(ABC):
    """Abstract base class for tools invoked by plan steps.

    Tools are registered with a ``ToolRegistry`` under ``name``; the planner
    sees them through ``describe()``.
    """

    name: str = ""
    description: str = ""

    @abstractmethod
    async def execute(self, params: Dict[str, Any]) -> ToolResult:
        """Execute the tool with the given parameters.

        Args:
            params: Arguments taken verbatim from the plan step's
                    ``toolArguments``. Values are dynamically typed.

        Returns:
            ToolResult with ``success`` False and ``error`` set when the tool
            could not do its job. Raising is also allowed; the registry
            converts exceptions into failed results.
        """
        pass

    @abstractmethod
    def get_schema(self) -> Dict[str, Any]:
        """Get the tool's schema definition.

        Returns:
            {
                'name': str,
                'description': str,
                'parameters': {
                    'type': 'object',
                    'properties': {...},
                    'required': [...]
                }
            }
        """
        pass

    def describe(self) -> ToolDescription:
        return ToolDescription.from_schema(self.get_schema())


class IToolExecutor(ABC):
    """Interface for the tool execution service."""

    @abstractmethod
    async def execute(self, tool_name: str, arguments: Dict[str, Any]) -> ToolResult:
        """Resolve ``tool_name`` and invoke it with ``arguments``.

        Unknown tools and tool failures are reported through a failed
        ``ToolResult``, not by raising.
        """
        pass

    @abstractmethod
    def list_tools(self) -> List[ToolDescription]:
        """Descriptions of every tool available to the planner."""
        pass
