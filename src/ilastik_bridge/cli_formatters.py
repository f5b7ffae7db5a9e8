# src/ilastik_bridge/cli_formatters.py
"""CLI event formatter factories for invocation output.

Each factory returns a dict mapping event types to handler callables,
suitable for subscribing to an EventBus.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import typer

from ilastik_bridge.contracts.enums import InvocationStatus
from ilastik_bridge.contracts.events import InvocationCompleted, StateChanged
from ilastik_bridge.core.events import EventBusProtocol

_STATUS_SYMBOLS = {
    InvocationStatus.SUCCEEDED: "✓",
    InvocationStatus.SAVED: "✓",
    InvocationStatus.FAILED: "✗",
    InvocationStatus.CANCELLED: "⚠",
}


def create_console_formatters() -> dict[type, Callable[..., None]]:
    """Create console formatters for human-readable CLI output."""

    def _format_state_changed(event: StateChanged) -> None:
        typer.echo(f"[{event.current.value.upper()}]")

    def _format_completed(event: InvocationCompleted) -> None:
        symbol = _STATUS_SYMBOLS[event.status]
        error_info = f": {event.error_message}" if event.error_message else ""
        typer.echo(
            f"\n{symbol} Invocation {event.status.value.upper()}{error_info} | {event.duration_seconds:.2f}s total",
            err=event.status in (InvocationStatus.FAILED, InvocationStatus.CANCELLED),
        )

    return {
        StateChanged: _format_state_changed,
        InvocationCompleted: _format_completed,
    }


def create_json_formatters() -> dict[type, Callable[..., None]]:
    """Create JSON formatters for structured CLI output."""

    def _format_state_changed_json(event: StateChanged) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "state_changed",
                    "invocation_id": event.invocation_id,
                    "previous": event.previous.value,
                    "current": event.current.value,
                }
            )
        )

    def _format_completed_json(event: InvocationCompleted) -> None:
        typer.echo(
            json.dumps(
                {
                    "event": "invocation_completed",
                    "invocation_id": event.invocation_id,
                    "status": event.status.value,
                    "duration_seconds": event.duration_seconds,
                    "error": event.error_message,
                }
            )
        )

    return {
        StateChanged: _format_state_changed_json,
        InvocationCompleted: _format_completed_json,
    }


def subscribe_formatters(
    event_bus: EventBusProtocol,
    formatters: dict[type, Callable[..., None]],
) -> None:
    """Subscribe all formatters to the event bus."""
    for event_type, handler in formatters.items():
        event_bus.subscribe(event_type, handler)
