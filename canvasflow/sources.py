"""Graph sources: where trigger nodes and the HTTP layer load graphs from.

Workflow and agent storage is owned elsewhere; the engine only needs the
saved graph JSON for an id. An agent resolves to the graph of the
workflow it runs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol


class GraphSource(Protocol):
    """Read-only access to persisted graph payloads."""

    async def get_workflow_graph(self, workflow_id: str) -> Optional[Any]:
        """Raw graph payload for a workflow, or None if unknown."""
        ...

    async def get_agent_graph(self, agent_id: str) -> Optional[Any]:
        """Raw graph payload of the workflow an agent runs, or None if unknown."""
        ...


class InMemoryGraphSource:
    """GraphSource backed by dicts, for tests and single-process setups."""

    def __init__(self):
        self._workflows: Dict[str, Any] = {}
        self._agents: Dict[str, str] = {}

    def add_workflow(self, workflow_id: Any, graph: Any) -> None:
        self._workflows[str(workflow_id)] = graph

    def add_agent(self, agent_id: Any, workflow_id: Any) -> None:
        """Bind an agent to the workflow it runs."""
        self._agents[str(agent_id)] = str(workflow_id)

    async def get_workflow_graph(self, workflow_id: str) -> Optional[Any]:
        return self._workflows.get(str(workflow_id))

    async def get_agent_graph(self, agent_id: str) -> Optional[Any]:
        workflow_id = self._agents.get(str(agent_id))
        if workflow_id is None:
            return None
        return self._workflows.get(workflow_id)
