"""Workflow and agent trigger endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from canvasflow.engine import ExecutionCoordinator, ExecutionSummary, agent_trigger_id
from canvasflow.sources import GraphSource

from ..dependencies import get_coordinator, get_graph_source
from ..schemas import TriggerRequest, TriggerResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["trigger"])

# HTTP status for runs ended by a fatal engine error; node-level failures stay 200
_FATAL_STATUS: Dict[str, int] = {
    "MalformedGraphError": 422,
    "GraphCycleError": 422,
    "CircularDependencyError": 409,
    "MaxDepthExceededError": 409,
}


def _status_code(summary: ExecutionSummary) -> int:
    if summary.success or summary.error_kind is None:
        return 200
    if summary.error_kind in _FATAL_STATUS:
        return _FATAL_STATUS[summary.error_kind]
    if summary.error_kind == "NodeExecutionError" and not summary.error_details.get("node_id"):
        # Run finished but no output node completed
        return 200
    return 500


def _respond(summary: ExecutionSummary) -> Any:
    body = TriggerResponse.from_summary(summary)
    status_code = _status_code(summary)
    if status_code == 200:
        return body
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", by_alias=True))


async def _run(
    coordinator: ExecutionCoordinator,
    graph: Any,
    payload: TriggerRequest,
    trigger_id: str,
    log_meta: Dict[str, Any],
) -> ExecutionSummary:
    return await coordinator.run(
        graph,
        payload.prompt,
        call_stack=tuple(payload.call_stack),
        metadata=payload.metadata,
        trigger_id=trigger_id,
        log_meta={**log_meta, "source": "api"},
    )


@router.post("/workflows/{workflow_id}/trigger", response_model=TriggerResponse)
async def trigger_workflow(
    workflow_id: str,
    payload: Optional[TriggerRequest] = None,
    source: GraphSource = Depends(get_graph_source),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """Run a saved workflow with the given prompt."""
    payload = payload or TriggerRequest()
    graph = await source.get_workflow_graph(workflow_id)
    if graph is None:
        raise HTTPException(status_code=404, detail=f"Workflow {workflow_id} not found")

    logger.info(f"Triggering workflow {workflow_id} (chain {payload.call_stack})")
    summary = await _run(coordinator, graph, payload, workflow_id, {"workflow_id": workflow_id})
    return _respond(summary)


@router.post("/agents/{agent_id}/trigger", response_model=TriggerResponse)
async def trigger_agent(
    agent_id: str,
    payload: Optional[TriggerRequest] = None,
    source: GraphSource = Depends(get_graph_source),
    coordinator: ExecutionCoordinator = Depends(get_coordinator),
):
    """Run the workflow behind an agent with the given prompt."""
    payload = payload or TriggerRequest()
    graph = await source.get_agent_graph(agent_id)
    if graph is None:
        raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")

    logger.info(f"Triggering agent {agent_id} (chain {payload.call_stack})")
    summary = await _run(coordinator, graph, payload, agent_trigger_id(agent_id), {"agent_id": agent_id})
    return _respond(summary)
