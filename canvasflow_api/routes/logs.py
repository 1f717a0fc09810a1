"""Run log endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_session
from ..repositories.run_log import RunLogRepository
from ..schemas import RunLogListResponse, RunLogResponse

router = APIRouter(prefix="/api/logs", tags=["logs"])


@router.get("", response_model=RunLogListResponse)
async def list_run_logs(
    status: Optional[str] = Query(None, description="running | complete | error"),
    workflow_id: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """List run logs, newest first."""
    repo = RunLogRepository(session)
    logs, total = await repo.list(status=status, workflow_id=workflow_id, page=page, page_size=page_size)
    return RunLogListResponse(
        items=[RunLogResponse(**log.to_dict()) for log in logs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{log_id}", response_model=RunLogResponse)
async def get_run_log(log_id: str, session: AsyncSession = Depends(get_session)):
    """Get a single run log."""
    log = await RunLogRepository(session).get(log_id)
    if not log:
        raise HTTPException(status_code=404, detail=f"Run log {log_id} not found")
    return RunLogResponse(**log.to_dict())
