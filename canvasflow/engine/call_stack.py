"""Call-Stack Guard

Pure check against re-entrant nested execution. A run entering workflow or
agent ``self_id`` under ``call_stack`` gets back a new chain with
``self_id`` appended; that chain must be threaded into every nested
invocation the run makes. Nothing is stored between calls.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .. import settings
from .errors import CircularDependencyError, MaxDepthExceededError


def check_and_push(
    call_stack: Sequence[str],
    self_id: str,
    max_depth: Optional[int] = None,
) -> Tuple[str, ...]:
    """Validate entering ``self_id`` and return the extended chain.

    Args:
        call_stack: Identifiers of the runs currently nested around this one
        self_id: Identifier of the workflow/agent being entered
        max_depth: Longest chain allowed (defaults to settings.MAX_CALL_DEPTH)

    Returns:
        A new tuple equal to ``call_stack`` with ``self_id`` appended

    Raises:
        CircularDependencyError: If ``self_id`` is already on the chain
        MaxDepthExceededError: If the extended chain is longer than allowed
    """
    chain = tuple(call_stack)
    extended = chain + (self_id,)
    if self_id in chain:
        raise CircularDependencyError(extended)

    limit = settings.MAX_CALL_DEPTH if max_depth is None else max_depth
    if len(extended) > limit:
        raise MaxDepthExceededError(extended, limit)
    return extended


def agent_trigger_id(agent_id: object) -> str:
    """Call-stack identifier for an agent."""
    return f"{settings.AGENT_ID_PREFIX}{agent_id}"
