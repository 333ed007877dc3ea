"""FastAPI application factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI

from notification_service.app.exception_handlers import configure_exception_handlers
from notification_service.app.lifespan import lifespan
from notification_service.app.router import setup_routers
from notification_service.core.settings import get_app_settings

if TYPE_CHECKING:
    from notification_service.core.settings.app import AppSettings
    from notification_service.features.notifications.container import NotificationContainer


def create_app(
    container: NotificationContainer | None = None,
    app_settings: AppSettings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Pre-built notification container. When omitted the
            lifespan handler builds one from the environment on startup.
        app_settings: Application settings override.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = app_settings or get_app_settings()

    app = FastAPI(
        title=app_settings.title,
        description=app_settings.description,
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
    )
    app.state.notifications = container

    # Exception handlers first, then routes
    configure_exception_handlers(app)
    setup_routers(app, app_settings)

    return app


# Application instance for uvicorn
app = create_app()
