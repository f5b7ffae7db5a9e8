"""Observability events for engine invocations.

Emitted by the orchestrator and consumed by CLI formatters.
"""

from dataclasses import dataclass

from ilastik_bridge.contracts.enums import InvocationState, InvocationStatus


@dataclass(frozen=True, slots=True)
class StateChanged:
    """Emitted on every lifecycle transition of an invocation."""

    invocation_id: str
    previous: InvocationState
    current: InvocationState


@dataclass(frozen=True, slots=True)
class InvocationCompleted:
    """Emitted once when an invocation reaches DONE.

    Attributes:
        invocation_id: Id of the finished invocation
        status: Final status
        duration_seconds: Wall time from IDLE to DONE
        error_message: Failure description, None on success
    """

    invocation_id: str
    status: InvocationStatus
    duration_seconds: float
    error_message: str | None = None
