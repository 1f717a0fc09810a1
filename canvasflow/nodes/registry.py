"""Node Executor Registry

Maps a node's type string to the executor that runs it. The coordinator
receives a registry instance at construction time; new node types are
added by registering them, without touching the coordinator.

Key Components:
- NodeDefinition: Metadata for node types (display, category, config schema)
- NodeExecutor: Protocol every executor satisfies
- BaseNodeExecutor: ABC with default config validation
- register_node_type: Decorator adding a class to the built-in catalog
- NodeExecutorRegistry: Per-engine mapping of type -> executor instance
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Protocol, Type, TypeVar

from ..engine.errors import UnknownNodeTypeError
from ..engine.state import NodeContext

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseNodeExecutor")


@dataclass
class NodeDefinition:
    """Metadata definition for a node type.

    Attributes:
        node_type: Unique identifier for the node type (e.g., "transform")
        display_name: Human-readable name for UI display
        description: Brief description of node functionality
        category: Category for grouping (e.g., "input", "processing", "trigger")
        input_schema: JSON schema of the node's config
        output_schema: JSON schema of the node's output
        entry: Nodes of this type are seeded with the run input instead of executed
    """

    node_type: str
    display_name: str
    description: str
    category: str
    input_schema: Dict[str, Any]
    output_schema: Dict[str, Any]
    entry: bool = False

    def __post_init__(self):
        if not self.node_type:
            raise ValueError("node_type cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")
        if not isinstance(self.input_schema, dict):
            raise ValueError("input_schema must be a dictionary")
        if not isinstance(self.output_schema, dict):
            raise ValueError("output_schema must be a dictionary")


class NodeExecutor(Protocol):
    """Interface for node executors."""

    async def execute(
        self, config: Any, inputs: Mapping[str, Any], context: NodeContext,
    ) -> Any:
        """Run the node.

        Args:
            config: The node's configuration, as saved in the graph
            inputs: Outputs of upstream nodes keyed by source id or target handle
            context: Run context (call stack, metadata, runner)

        Returns:
            The node's output value

        Raises:
            Exception: Any failure; the coordinator records it against the node
        """
        ...

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        """Return a list of {field, error} dicts, empty when valid."""
        ...


class BaseNodeExecutor(ABC):
    """Abstract base class providing common executor functionality."""

    definition: ClassVar[Optional[NodeDefinition]] = None

    @abstractmethod
    async def execute(
        self, config: Any, inputs: Mapping[str, Any], context: NodeContext,
    ) -> Any:
        """Run the node. Must be implemented by subclasses."""

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        """Default validation: config is an object holding the schema's required fields."""
        errors = []
        if config is None:
            config = {}
        if not isinstance(config, Mapping):
            return [{"field": "config", "error": "config must be an object"}]

        if self.definition is None:
            return errors

        for field_name in self.definition.input_schema.get("required", []):
            if field_name not in config:
                errors.append({
                    "field": field_name,
                    "error": f"Required field '{field_name}' is missing",
                })
        return errors

    @staticmethod
    def primary_input(inputs: Mapping[str, Any]) -> Any:
        """The single upstream value, or the whole mapping for multi-input nodes."""
        if not inputs:
            return None
        if len(inputs) == 1:
            return next(iter(inputs.values()))
        return dict(inputs)


class FunctionExecutor(BaseNodeExecutor):
    """Adapts a plain (sync or async) function to the executor interface."""

    def __init__(self, func: Callable[[Any, Mapping[str, Any], NodeContext], Any]):
        self.func = func

    async def execute(self, config, inputs, context):
        result = self.func(config, inputs, context)
        if inspect.isawaitable(result):
            result = await result
        return result


# Built-in executor classes, filled by @register_node_type
NODE_CATALOG: Dict[str, Type[BaseNodeExecutor]] = {}


def register_node_type(
    node_type: str,
    display_name: str,
    description: str,
    category: str,
    input_schema: Dict[str, Any],
    output_schema: Dict[str, Any],
    entry: bool = False,
) -> Callable[[Type[T]], Type[T]]:
    """Decorator adding an executor class to the built-in catalog.

    Example:
        @register_node_type(
            node_type="transform",
            display_name="Transform",
            description="Transforms text from upstream nodes",
            category="processing",
            input_schema={"type": "object", "properties": {...}},
            output_schema={"type": "string"},
        )
        class TransformNode(BaseNodeExecutor):
            async def execute(self, config, inputs, context):
                ...
    """

    def decorator(cls: Type[T]) -> Type[T]:
        cls.definition = NodeDefinition(
            node_type=node_type,
            display_name=display_name,
            description=description,
            category=category,
            input_schema=input_schema,
            output_schema=output_schema,
            entry=entry,
        )
        NODE_CATALOG[node_type] = cls
        logger.debug(f"Cataloged node type: {node_type} ({display_name})")
        return cls

    return decorator


class NodeExecutorRegistry:
    """Mapping of node type -> executor, injected into the coordinator."""

    def __init__(self):
        self._executors: Dict[str, NodeExecutor] = {}
        self._definitions: Dict[str, NodeDefinition] = {}

    def register(
        self,
        node_type: str,
        executor: Any,
        definition: Optional[NodeDefinition] = None,
    ) -> None:
        """Register an executor instance or a plain function for ``node_type``.

        A previous registration for the same type is replaced.
        """
        if not node_type:
            raise ValueError("node_type cannot be empty")
        if not hasattr(executor, "execute"):
            if not callable(executor):
                raise TypeError(f"executor for '{node_type}' must define execute() or be callable")
            executor = FunctionExecutor(executor)

        definition = definition or getattr(executor, "definition", None)
        if node_type in self._executors:
            logger.warning(f"Replacing executor for node type: {node_type}")
        self._executors[node_type] = executor
        if definition is not None:
            self._definitions[node_type] = definition
        else:
            self._definitions.pop(node_type, None)
        logger.info(f"Registered node executor: {node_type}")

    def unregister(self, node_type: str) -> None:
        self._executors.pop(node_type, None)
        self._definitions.pop(node_type, None)

    def get(self, node_type: str) -> NodeExecutor:
        """Return the executor for ``node_type``.

        Raises:
            UnknownNodeTypeError: If the type is not registered
        """
        try:
            return self._executors[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type, self._executors.keys()) from None

    def is_registered(self, node_type: str) -> bool:
        return node_type in self._executors

    def is_entry_type(self, node_type: str) -> bool:
        definition = self._definitions.get(node_type)
        return bool(definition and definition.entry)

    def get_definition(self, node_type: str) -> Optional[NodeDefinition]:
        return self._definitions.get(node_type)

    def list_definitions(self, category: Optional[str] = None) -> List[NodeDefinition]:
        return [
            definition
            for definition in self._definitions.values()
            if category is None or definition.category == category
        ]

    @property
    def node_types(self) -> List[str]:
        return list(self._executors.keys())

    async def execute(
        self,
        node_type: str,
        config: Any,
        inputs: Mapping[str, Any],
        context: NodeContext,
    ) -> Any:
        """Validate ``config`` and run the executor registered for ``node_type``.

        Raises:
            UnknownNodeTypeError: If the type is not registered
            ValueError: If the executor rejects the config
            Exception: Whatever the executor raises
        """
        executor = self.get(node_type)

        validate = getattr(executor, "validate_config", None)
        if validate is not None:
            errors = validate(config)
            if errors:
                details = "; ".join(f"{e['field']}: {e['error']}" for e in errors)
                raise ValueError(f"Invalid config for {node_type} node: {details}")

        result = executor.execute(config, inputs, context)
        if inspect.isawaitable(result):
            result = await result
        return result
