"""Repository layer for run-log persistence.

Provides async CRUD operations for RunLogModel, and SqlLogSink, the
LogSink the coordinator writes through when the API is running.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import RunLogModel

logger = logging.getLogger(__name__)

# Payload keys whose column name differs
_COLUMN_ALIASES = {"metadata": "run_metadata"}

_DATETIME_COLUMNS = ("started_at", "completed_at")


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so arbitrary node outputs fit a JSON column."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _to_columns(payload: Mapping[str, Any]) -> Dict[str, Any]:
    columns: Dict[str, Any] = {}
    for key, value in payload.items():
        column = _COLUMN_ALIASES.get(key, key)
        if not hasattr(RunLogModel, column) or column == "id":
            continue
        if column in _DATETIME_COLUMNS:
            if isinstance(value, datetime) or value is None:
                columns[column] = value
            else:
                columns[column] = datetime.fromisoformat(str(value))
        elif column in ("error", "error_kind", "status", "trigger_id", "run_id",
                        "workflow_id", "agent_id", "parent_run_id", "source"):
            columns[column] = None if value is None else str(value)
        else:
            columns[column] = _json_safe(value)
    return columns


class RunLogRepository:
    """Data access layer for run logs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> RunLogModel:
        """Create a run log.

        Args:
            **fields: Column values; ``metadata`` maps to ``run_metadata``,
                unknown keys are ignored

        Returns:
            Created RunLogModel
        """
        log = RunLogModel(**_to_columns(fields))
        self.session.add(log)
        await self.session.flush()
        return log

    async def get(self, log_id: str) -> Optional[RunLogModel]:
        """Get a run log by ID."""
        result = await self.session.execute(
            select(RunLogModel).where(RunLogModel.id == log_id)
        )
        return result.scalar_one_or_none()

    async def list(
        self,
        status: Optional[str] = None,
        workflow_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[RunLogModel], int]:
        """List run logs, newest first.

        Returns:
            Tuple of (logs, total_count)
        """
        query = select(RunLogModel)
        count_query = select(func.count()).select_from(RunLogModel)

        if status:
            query = query.where(RunLogModel.status == status)
            count_query = count_query.where(RunLogModel.status == status)
        if workflow_id:
            query = query.where(RunLogModel.workflow_id == workflow_id)
            count_query = count_query.where(RunLogModel.workflow_id == workflow_id)

        query = query.order_by(RunLogModel.started_at.desc())
        query = query.offset((page - 1) * page_size).limit(page_size)

        result = await self.session.execute(query)
        logs = list(result.scalars().all())

        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0

        return logs, total

    async def update(self, log_id: str, **fields: Any) -> Optional[RunLogModel]:
        """Update a run log with arbitrary fields.

        Returns:
            Updated RunLogModel or None if not found
        """
        log = await self.get(log_id)
        if not log:
            return None

        for key, value in _to_columns(fields).items():
            setattr(log, key, value)

        await self.session.flush()
        return log


class SqlLogSink:
    """LogSink storing run records through RunLogRepository.

    Each call uses its own session, so records are committed as soon as
    they are written and nested runs never share a transaction.

    Args:
        session_ctx: Factory returning an async context manager that yields a
            committed-on-exit AsyncSession (e.g. database.get_session_ctx)
    """

    def __init__(self, session_ctx: Callable[[], Any]):
        self.session_ctx = session_ctx

    async def create_run(self, meta: Mapping[str, Any]) -> str:
        async with self.session_ctx() as session:
            log = await RunLogRepository(session).create(**meta)
            log_id = log.id
        logger.info(f"Created run log {log_id} for '{meta.get('trigger_id')}'")
        return log_id

    async def update_run(self, log_id: str, patch: Mapping[str, Any]) -> None:
        async with self.session_ctx() as session:
            log = await RunLogRepository(session).update(log_id, **patch)
        if log is None:
            raise KeyError(f"run log {log_id} not found")
