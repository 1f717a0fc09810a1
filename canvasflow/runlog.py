"""Run log collaborator.

The coordinator records each run twice: ``create_run`` when it starts
(status "running") and ``update_run`` with the terminal status, outputs,
per-node errors and timing. No per-node persistence happens here; live
node state goes through the ``on_node_state`` callback.

The SQL-backed sink lives in canvasflow_api.repositories.run_log.
"""

from __future__ import annotations

import asyncio
import copy
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol


class LogSink(Protocol):
    """Interface the coordinator writes run records through."""

    async def create_run(self, meta: Mapping[str, Any]) -> str:
        """Create a run record and return its log id."""
        ...

    async def update_run(self, log_id: str, patch: Mapping[str, Any]) -> None:
        """Merge ``patch`` into an existing run record."""
        ...


class InMemoryLogSink:
    """Process-local LogSink keeping records in insertion order."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def create_run(self, meta: Mapping[str, Any]) -> str:
        log_id = uuid.uuid4().hex
        async with self._lock:
            self._records[log_id] = {"id": log_id, **copy.deepcopy(dict(meta))}
        return log_id

    async def update_run(self, log_id: str, patch: Mapping[str, Any]) -> None:
        async with self._lock:
            if log_id not in self._records:
                raise KeyError(f"run log {log_id} not found")
            self._records[log_id].update(copy.deepcopy(dict(patch)))

    def get(self, log_id: str) -> Optional[Dict[str, Any]]:
        return self._records.get(log_id)

    def list(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            record for record in self._records.values()
            if status is None or record.get("status") == status
        ]
