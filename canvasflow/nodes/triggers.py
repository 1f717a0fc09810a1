"""Trigger Node Executors

``workflow_trigger`` and ``agent_trigger`` run another saved graph from
inside a workflow. They load the target from the injected GraphSource and
call back into the coordinator that is running them, passing on the
current call-stack chain so re-entry is caught by the Call-Stack Guard.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import abstractmethod
from typing import Any, Dict, List, Mapping, Optional

from .. import settings
from ..engine.call_stack import agent_trigger_id
from ..engine.errors import NodeExecutionError
from ..engine.state import ExecutionSummary, NodeContext
from ..sources import GraphSource
from .registry import BaseNodeExecutor, register_node_type

logger = logging.getLogger(__name__)

# Fields looked up, in order, when the upstream value is an object
_TEXT_FIELDS = ("text", "content", "input")

_TRIGGER_PROPERTIES = {
    "prompt": {"type": "string", "description": "Fixed prompt; defaults to the upstream value"},
    "input_field": {"type": "string", "description": "Field to read from an object input"},
    "metadata": {"type": "object"},
    "timeout": {"type": "number", "description": "Seconds before the nested run is abandoned"},
}


class _TriggerNode(BaseNodeExecutor):
    """Shared behavior of the trigger node types."""

    target_field = ""

    def __init__(self, source: GraphSource):
        self.source = source

    @abstractmethod
    async def load_graph(self, target: str) -> Optional[Any]:
        """Fetch the target graph from the source, or None when missing."""

    @abstractmethod
    def trigger_id(self, target: str) -> str:
        """Identifier pushed onto the call stack for the nested run."""

    @abstractmethod
    def log_meta(self, target: str) -> Dict[str, Any]:
        """Extra fields for the nested run's log record."""

    async def execute(self, config, inputs, context: NodeContext):
        target = str(config[self.target_field])
        if context.runner is None:
            raise NodeExecutionError(context.node_id, "no coordinator available for nested run")

        graph = await self.load_graph(target)
        if graph is None:
            raise NodeExecutionError(
                context.node_id, f"{self.target_field.replace('_', ' ')} '{target}' not found",
            )

        prompt = config.get("prompt")
        if prompt is None:
            prompt = self.extract_text(self.primary_input(inputs), config.get("input_field"))

        metadata = {**dict(context.metadata), **dict(config.get("metadata") or {})}
        timeout = float(config.get("timeout", settings.TRIGGER_TIMEOUT))

        logger.info(
            f"{type(self).__name__} {context.node_id}: entering '{self.trigger_id(target)}' "
            f"under chain {list(context.call_stack)}"
        )
        try:
            summary: ExecutionSummary = await asyncio.wait_for(
                context.runner.run(
                    graph,
                    prompt,
                    call_stack=context.call_stack,
                    metadata=metadata,
                    trigger_id=self.trigger_id(target),
                    log_meta={**self.log_meta(target), "parent_run_id": context.run_id},
                ),
                timeout,
            )
        except asyncio.TimeoutError:
            raise NodeExecutionError(
                context.node_id, f"nested run '{self.trigger_id(target)}' timed out after {timeout}s",
            ) from None

        if not summary.success:
            message = summary.error or "nested run failed"
            if summary.errors and not summary.error_details.get("node_id"):
                # Surface what failed inside the nested run
                details = "; ".join(f"{e['node_id']}: {e['error']}" for e in summary.errors)
                message = f"{message} ({details})"
            raise NodeExecutionError(context.node_id, message)
        return summary.output

    def validate_config(self, config: Any) -> List[Dict[str, str]]:
        errors = super().validate_config(config)
        if errors:
            return errors
        if not str(config.get(self.target_field) or "").strip():
            errors.append({"field": self.target_field, "error": "must not be empty"})
        timeout = config.get("timeout")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            errors.append({"field": "timeout", "error": "must be a positive number"})
        return errors

    @staticmethod
    def extract_text(value: Any, input_field: Optional[str] = None) -> Any:
        """Reduce an upstream object to the text the nested run should see.

        Strings pass through. For objects, ``text``, ``content``, ``input``
        and then ``input_field`` are tried; otherwise the object is sent as JSON.
        """
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, Mapping):
            for field_name in _TEXT_FIELDS + ((input_field,) if input_field else ()):
                if isinstance(value.get(field_name), str):
                    return value[field_name]
            return json.dumps(value, ensure_ascii=False, default=str)
        return value


@register_node_type(
    node_type="workflow_trigger",
    display_name="Workflow Trigger",
    description="Runs another workflow and returns its output",
    category="trigger",
    input_schema={
        "type": "object",
        "properties": {"workflow_id": {"type": "string"}, **_TRIGGER_PROPERTIES},
        "required": ["workflow_id"],
    },
    output_schema={"type": "any"},
)
class WorkflowTriggerNode(_TriggerNode):
    target_field = "workflow_id"

    async def load_graph(self, target: str) -> Optional[Any]:
        return await self.source.get_workflow_graph(target)

    def trigger_id(self, target: str) -> str:
        return target

    def log_meta(self, target: str) -> Dict[str, Any]:
        return {"workflow_id": target, "source": "workflow_trigger"}


@register_node_type(
    node_type="agent_trigger",
    display_name="Agent Trigger",
    description="Runs an agent's workflow and returns its output",
    category="trigger",
    input_schema={
        "type": "object",
        "properties": {"agent_id": {"type": "string"}, **_TRIGGER_PROPERTIES},
        "required": ["agent_id"],
    },
    output_schema={"type": "any"},
)
class AgentTriggerNode(_TriggerNode):
    target_field = "agent_id"

    async def load_graph(self, target: str) -> Optional[Any]:
        return await self.source.get_agent_graph(target)

    def trigger_id(self, target: str) -> str:
        return agent_trigger_id(target)

    def log_meta(self, target: str) -> Dict[str, Any]:
        return {"agent_id": target, "source": "agent_trigger"}
