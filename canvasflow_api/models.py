"""SQLAlchemy ORM models for canvasflow.

Tables:
- run_logs: One record per workflow/agent run, created when the run starts
  and completed with its terminal status
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _gen_uuid() -> str:
    return str(uuid.uuid4())


class RunLogModel(Base):
    """Persistent record of a single run.

    ``call_stack`` is the chain the run executed under (its own trigger id
    included once the guard accepted it). ``execution_path`` holds the
    scheduling order, unexecuted nodes and timing.
    """

    __tablename__ = "run_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_gen_uuid)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    workflow_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    agent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parent_run_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(
        String(32), nullable=True, comment="api | workflow_trigger | agent_trigger",
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="running",
        comment="running | complete | error",
    )

    input: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    output: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    outputs: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    errors: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(
        JSON, nullable=True, comment="Per-node errors: [{node_id, node_type, error}]",
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_kind: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    error_details: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    call_stack: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    run_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)
    execution_path: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_run_logs_status", "status"),
        Index("ix_run_logs_workflow_id", "workflow_id"),
        Index("ix_run_logs_started_at", "started_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "trigger_id": self.trigger_id,
            "workflow_id": self.workflow_id,
            "agent_id": self.agent_id,
            "parent_run_id": self.parent_run_id,
            "source": self.source,
            "status": self.status,
            "input": self.input,
            "output": self.output,
            "outputs": self.outputs,
            "errors": self.errors,
            "error": self.error,
            "error_kind": self.error_kind,
            "error_details": self.error_details,
            "call_stack": self.call_stack,
            "metadata": self.run_metadata,
            "execution_path": self.execution_path,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
