"""Resilience primitives."""

from __future__ import annotations

from notification_service.infra.resilience.circuit import (
    CircuitEvent,
    CircuitState,
    TransportCircuit,
    next_state,
)

__all__ = ["CircuitEvent", "CircuitState", "TransportCircuit", "next_state"]
