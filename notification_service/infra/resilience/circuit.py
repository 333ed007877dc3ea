"""Sticky circuit for the primary delivery transport.

Unlike a classic breaker, this circuit never recovers on its own: once the
primary transport times out, every send goes straight to the fallback
transport until an operator resets it.

States:
    - OPEN: primary transport may be attempted
    - BLOCKED: primary transport is skipped

Transitions:
    OPEN -> BLOCKED: on a timeout
    BLOCKED -> OPEN: on an explicit reset

Every other (state, event) pair leaves the state unchanged. Transport errors
that are not timeouts do not trip the circuit.

Example:
    >>> circuit = TransportCircuit("smtp")
    >>> circuit.record(CircuitEvent.TIMEOUT)
    <CircuitState.BLOCKED: 'blocked'>
    >>> circuit.allows_primary
    False
    >>> circuit.reset()
    <CircuitState.OPEN: 'open'>
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from notification_service.infra.metrics.prometheus import circuit_state

logger = logging.getLogger(__name__)


class CircuitState(StrEnum):
    """Circuit states."""

    OPEN = "open"
    BLOCKED = "blocked"


class CircuitEvent(StrEnum):
    """Observations fed into the circuit."""

    SUCCESS = "success"
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    RESET = "reset"


_TRANSITIONS: dict[tuple[CircuitState, CircuitEvent], CircuitState] = {
    (CircuitState.OPEN, CircuitEvent.TIMEOUT): CircuitState.BLOCKED,
    (CircuitState.BLOCKED, CircuitEvent.RESET): CircuitState.OPEN,
}


def next_state(state: CircuitState, event: CircuitEvent) -> CircuitState:
    """Pure transition function.

    Args:
        state: Current state.
        event: Observed event.

    Returns:
        The resulting state; unchanged for any pair without a transition.
    """
    return _TRANSITIONS.get((state, event), state)


class TransportCircuit:
    """Process-wide holder of one channel's circuit state.

    Not locked: concurrent updates are last-writer-wins, and the only
    automatic transition is idempotent.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._state = CircuitState.OPEN
        self.changed_at: datetime | None = None
        self.last_event: CircuitEvent | None = None
        circuit_state.labels(channel=name).set(0)

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    @property
    def allows_primary(self) -> bool:
        """Whether the primary transport may be attempted."""
        return self._state == CircuitState.OPEN

    def record(self, event: CircuitEvent) -> CircuitState:
        """Apply ``event`` and return the resulting state."""
        previous = self._state
        self._state = next_state(previous, event)
        self.last_event = event
        if self._state != previous:
            self.changed_at = datetime.now(UTC)
            circuit_state.labels(channel=self.name).set(
                1 if self._state == CircuitState.BLOCKED else 0
            )
            logger.warning(
                "Circuit state changed",
                extra={
                    "circuit": self.name,
                    "from_state": previous.value,
                    "to_state": self._state.value,
                    "event": event.value,
                },
            )
        return self._state

    def reset(self) -> CircuitState:
        """Operator reset back to OPEN."""
        return self.record(CircuitEvent.RESET)

    def snapshot(self) -> dict[str, Any]:
        """Serializable view for status endpoints."""
        return {
            "name": self.name,
            "state": self._state.value,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "last_event": self.last_event.value if self.last_event else None,
        }


__all__ = ["CircuitEvent", "CircuitState", "TransportCircuit", "next_state"]
