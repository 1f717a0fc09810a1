"""Unit tests for the Node Executor Registry

Tests cover:
- NodeDefinition validation
- Registering executor instances and plain functions
- Built-in catalog and create_default_registry
- Config validation before execution
"""

import pytest

from canvasflow.engine import NodeContext, UnknownNodeTypeError
from canvasflow.nodes import (
    NODE_CATALOG,
    BaseNodeExecutor,
    FunctionExecutor,
    NodeDefinition,
    NodeExecutorRegistry,
    create_default_registry,
    register_node_type,
)
from canvasflow.sources import InMemoryGraphSource


def _context(node_id="n1"):
    return NodeContext(node_id=node_id, run_id="run-1", call_stack=("W1",), metadata={})


class TestNodeDefinition:
    """Test NodeDefinition dataclass validation."""

    def test_valid_node_definition(self):
        definition = NodeDefinition(
            node_type="test_node",
            display_name="Test Node",
            description="Test description",
            category="test",
            input_schema={"type": "object"},
            output_schema={"type": "object"},
        )

        assert definition.node_type == "test_node"
        assert definition.entry is False

    @pytest.mark.parametrize("field, value, message", [
        ("node_type", "", "node_type cannot be empty"),
        ("display_name", "", "display_name cannot be empty"),
        ("input_schema", "nope", "input_schema must be a dictionary"),
        ("output_schema", [], "output_schema must be a dictionary"),
    ])
    def test_invalid_fields(self, field, value, message):
        kwargs = dict(
            node_type="t",
            display_name="T",
            description="",
            category="test",
            input_schema={},
            output_schema={},
        )
        kwargs[field] = value

        with pytest.raises(ValueError, match=message):
            NodeDefinition(**kwargs)


class TestRegistration:
    """Test registering and looking up executors."""

    @pytest.mark.asyncio
    async def test_register_function(self):
        registry = NodeExecutorRegistry()
        registry.register("double", lambda config, inputs, context: inputs["x"] * 2)

        assert isinstance(registry.get("double"), FunctionExecutor)
        assert await registry.execute("double", {}, {"x": 4}, _context()) == 8

    @pytest.mark.asyncio
    async def test_register_async_function(self):
        async def shout(config, inputs, context):
            return f"{context.node_id}!"

        registry = NodeExecutorRegistry()
        registry.register("shout", shout)

        assert await registry.execute("shout", {}, {}, _context("hey")) == "hey!"

    def test_register_rejects_non_callable(self):
        with pytest.raises(TypeError):
            NodeExecutorRegistry().register("bad", 42)

    def test_register_rejects_empty_type(self):
        with pytest.raises(ValueError):
            NodeExecutorRegistry().register("", lambda *a: None)

    def test_replace_and_unregister(self):
        registry = NodeExecutorRegistry()
        registry.register("t", lambda *a: 1)
        registry.register("t", lambda *a: 2)

        assert registry.node_types == ["t"]

        registry.unregister("t")
        assert not registry.is_registered("t")

    def test_unknown_type(self):
        registry = NodeExecutorRegistry()
        registry.register("known", lambda *a: None)

        with pytest.raises(UnknownNodeTypeError) as exc_info:
            registry.get("mystery")

        assert exc_info.value.node_type == "mystery"
        assert "['known']" in str(exc_info.value)
        assert exc_info.value.fatal is False


class TestCatalog:
    """Test decorator registration and the default registry."""

    def test_builtins_cataloged(self):
        for node_type in ("text_input", "transform", "decision", "http_request", "output",
                          "workflow_trigger", "agent_trigger"):
            assert node_type in NODE_CATALOG

    def test_decorator_sets_definition(self):
        @register_node_type(
            node_type="test_catalog_node",
            display_name="Test Catalog Node",
            description="Registered by a test",
            category="test",
            input_schema={"type": "object", "required": ["name"]},
            output_schema={"type": "string"},
        )
        class CatalogNode(BaseNodeExecutor):
            async def execute(self, config, inputs, context):
                return config["name"]

        try:
            assert CatalogNode.definition.node_type == "test_catalog_node"
            assert NODE_CATALOG["test_catalog_node"] is CatalogNode
        finally:
            NODE_CATALOG.pop("test_catalog_node", None)

    def test_default_registry_without_source_skips_triggers(self):
        registry = create_default_registry()

        assert registry.is_registered("transform")
        assert not registry.is_registered("workflow_trigger")
        assert registry.is_entry_type("text_input")
        assert not registry.is_entry_type("output")

    def test_default_registry_with_source(self):
        registry = create_default_registry(InMemoryGraphSource())

        assert registry.is_registered("workflow_trigger")
        assert registry.is_registered("agent_trigger")
        assert [d.node_type for d in registry.list_definitions("trigger")] == ["workflow_trigger", "agent_trigger"]
        assert registry.get_definition("decision").category == "control"


class TestConfigValidation:
    """Test validation performed by registry.execute."""

    @pytest.mark.asyncio
    async def test_missing_required_field(self):
        registry = create_default_registry()

        with pytest.raises(ValueError, match="Required field 'operation' is missing"):
            await registry.execute("transform", {}, {"a": "x"}, _context())

    @pytest.mark.asyncio
    async def test_non_object_config(self):
        registry = create_default_registry()

        with pytest.raises(ValueError, match="config must be an object"):
            await registry.execute("output", "text", {}, _context())

    @pytest.mark.asyncio
    async def test_valid_config_executes(self):
        registry = create_default_registry()

        result = await registry.execute("transform", {"operation": "trim"}, {"a": "  x "}, _context())

        assert result == "x"
