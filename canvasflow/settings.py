"""Engine runtime settings: tunable parameters for workflow execution.

All values read from environment variables with defaults. Import from here
instead of hardcoding.

Infrastructure config (database URL, API host, log directory) stays in
canvasflow/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Nested execution
# =====================================================================

# Longest chain of nested workflow/agent triggers a run may sit under
MAX_CALL_DEPTH = _int("CANVASFLOW_MAX_CALL_DEPTH", 25)


# =====================================================================
# Scheduling
# =====================================================================

# Floor of the dequeue safety bound: max(floor, node_count ** 2)
SCHEDULER_MIN_SAFETY_BOUND = _int("CANVASFLOW_SCHEDULER_MIN_SAFETY_BOUND", 100)

# Ready nodes executed at once; 1 keeps the one-node-at-a-time behavior
MAX_CONCURRENCY = _int("CANVASFLOW_MAX_CONCURRENCY", 1)

# Per-node timeout in seconds; 0 disables
NODE_TIMEOUT = _float("CANVASFLOW_NODE_TIMEOUT", 0.0)


# =====================================================================
# Built-in nodes
# =====================================================================

# Default timeout for workflow_trigger / agent_trigger nodes (seconds)
TRIGGER_TIMEOUT = _float("CANVASFLOW_TRIGGER_TIMEOUT", 30.0)

# Default timeout for http_request nodes (seconds)
HTTP_REQUEST_TIMEOUT = _float("CANVASFLOW_HTTP_REQUEST_TIMEOUT", 30.0)

# Identifier prefix used for agents in the call stack
AGENT_ID_PREFIX = _str("CANVASFLOW_AGENT_ID_PREFIX", "agent-")
