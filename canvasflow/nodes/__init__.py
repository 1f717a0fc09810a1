"""Node executors: the registry and the built-in node types."""

from __future__ import annotations

import logging
from typing import Optional

from ..sources import GraphSource
from .builtin import DecisionNode, HttpRequestNode, OutputNode, TextInputNode, TransformNode
from .registry import (
    NODE_CATALOG,
    BaseNodeExecutor,
    FunctionExecutor,
    NodeDefinition,
    NodeExecutor,
    NodeExecutorRegistry,
    register_node_type,
)
from .triggers import AgentTriggerNode, WorkflowTriggerNode

logger = logging.getLogger(__name__)

_TRIGGER_TYPES = (WorkflowTriggerNode, AgentTriggerNode)


def create_default_registry(source: Optional[GraphSource] = None) -> NodeExecutorRegistry:
    """Registry holding every cataloged node type.

    Trigger node types need a GraphSource and are only registered when one
    is given.
    """
    registry = NodeExecutorRegistry()
    for node_type, cls in NODE_CATALOG.items():
        if issubclass(cls, _TRIGGER_TYPES):
            if source is None:
                logger.debug(f"Skipping {node_type}: no graph source")
                continue
            registry.register(node_type, cls(source))
        else:
            registry.register(node_type, cls())
    return registry


__all__ = [
    "AgentTriggerNode",
    "BaseNodeExecutor",
    "DecisionNode",
    "FunctionExecutor",
    "HttpRequestNode",
    "NODE_CATALOG",
    "NodeDefinition",
    "NodeExecutor",
    "NodeExecutorRegistry",
    "OutputNode",
    "TextInputNode",
    "TransformNode",
    "WorkflowTriggerNode",
    "create_default_registry",
    "register_node_type",
]
