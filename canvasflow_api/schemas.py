"""Pydantic schemas for the trigger and run-log endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from canvasflow.engine import ExecutionSummary


class TriggerRequest(BaseModel):
    """Request for POST /api/workflows/{id}/trigger and /api/agents/{id}/trigger."""

    model_config = ConfigDict(populate_by_name=True)

    prompt: Any = Field(default="", description="Value seeded into the graph's input nodes")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    call_stack: List[str] = Field(
        default_factory=list,
        alias="_callStack",
        description="Chain of trigger ids this request is nested under",
    )


class TriggerResponse(BaseModel):
    """Outcome of a triggered run. Field names follow the canvas client."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    output: Any = None
    status: str
    log_id: Optional[str] = Field(default=None, alias="logId")
    run_id: str = Field(alias="runId")
    call_stack: List[str] = Field(default_factory=list, alias="_callStack")
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    error_kind: Optional[str] = Field(default=None, alias="errorKind")
    circular_dependency: bool = Field(default=False, alias="circularDependency")
    chain: List[str] = Field(default_factory=list)
    unexecuted: List[str] = Field(default_factory=list)
    execution_time_ms: Optional[float] = Field(default=None, alias="executionTimeMs")

    @classmethod
    def from_summary(cls, summary: ExecutionSummary) -> "TriggerResponse":
        return cls(
            success=summary.success,
            output=summary.output,
            status=summary.overall_status.value,
            log_id=summary.log_id,
            run_id=summary.run_id,
            call_stack=list(summary.call_stack),
            errors=summary.errors,
            error=summary.error,
            error_kind=summary.error_kind,
            circular_dependency=summary.circular_dependency,
            chain=summary.chain,
            unexecuted=summary.unexecuted,
            execution_time_ms=summary.execution_time_ms,
        )


class RunLogResponse(BaseModel):
    """A persisted run log."""

    id: str
    run_id: str
    trigger_id: Optional[str] = None
    workflow_id: Optional[str] = None
    agent_id: Optional[str] = None
    parent_run_id: Optional[str] = None
    source: Optional[str] = None
    status: str
    input: Any = None
    output: Any = None
    outputs: Optional[Dict[str, Any]] = None
    errors: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    call_stack: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    execution_path: Optional[Dict[str, Any]] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class RunLogListResponse(BaseModel):
    """Paginated run logs."""

    items: List[RunLogResponse]
    total: int
    page: int
    page_size: int
