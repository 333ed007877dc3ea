"""Database engine and session helpers."""

from __future__ import annotations

from notification_service.infra.database.session import (
    check_connection,
    create_engine,
    create_session_factory,
    init_models,
    session_scope,
)

__all__ = [
    "check_connection",
    "create_engine",
    "create_session_factory",
    "init_models",
    "session_scope",
]
