"""Management CLI for the notification service.

    notify serve                  Run the API with the scheduler
    notify init-db                Create the notification tables
    notify drain                  Send due queue items once
    notify sweep                  Re-arm failed and stalled queue items once
    notify jobs                   List scheduled jobs
    notify run-job NAME           Run one scheduled job now
    notify send-test EMAIL        Send one template with sample data
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import json
import sys
from typing import TYPE_CHECKING, Any

import click

from notification_service.cli.utils import coro, echo_json, error, header, info, success, warning
from notification_service.core.settings import get_app_settings, get_db_settings
from notification_service.features.notifications.exceptions import (
    JobNotFoundError,
    TemplateNotFoundError,
)
from notification_service.infra.logging import setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from notification_service.features.notifications.container import NotificationContainer


@asynccontextmanager
async def _container(*, with_scheduler: bool = False) -> AsyncIterator[NotificationContainer]:
    from notification_service.app.lifespan import attach_scheduler
    from notification_service.features.notifications.container import open_container

    container = await open_container()
    if with_scheduler:
        attach_scheduler(container, start=False)
    try:
        yield container
    finally:
        await container.close()


@click.group()
@click.version_option(version="1.0.0", prog_name="notify")
def cli() -> None:
    """Notification service management commands."""


@cli.command()
@click.option("--host", default=None, help="Bind host (defaults to APP_HOST)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to APP_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the API server.

    Always a single worker: the scheduler runs in-process and must not be
    started twice.
    """
    import uvicorn

    app_settings = get_app_settings()
    uvicorn.run(
        "notification_service.app.main:app",
        host=host or app_settings.host,
        port=port or app_settings.port,
        reload=reload,
        log_config=None,
    )


@cli.command(name="init-db")
@click.option(
    "--with-directory",
    is_flag=True,
    help="Also create the platform user/deal tables (local development only)",
)
@coro
async def init_db(with_directory: bool) -> None:
    """Create the notification tables."""
    from notification_service.features.notifications.directory import directory_metadata
    from notification_service.infra.database.session import create_engine, init_models

    engine = create_engine(get_db_settings())
    try:
        await init_models(engine)
        if with_directory:
            async with engine.begin() as conn:
                await conn.run_sync(directory_metadata.create_all)
            info("Directory tables created")
    finally:
        await engine.dispose()
    success("Database tables ready")


@cli.command()
@click.option("--batch-size", type=click.IntRange(1, 500), default=None, help="Items to drain")
@coro
async def drain(batch_size: int | None) -> None:
    """Send due queue items once."""
    async with _container() as container:
        summary = await container.processor.drain(batch_size)
    if summary.skipped:
        warning("Another drain is already running")
        return
    success(f"Processed {summary.processed} item(s): {summary.sent} sent, {summary.failed} failed")


@cli.command()
@coro
async def sweep() -> None:
    """Re-arm failed queue items past their cooldown and recover stalled ones."""
    async with _container() as container:
        rearmed = await container.sweeper.sweep()
        recovered = await container.sweeper.recover_stalled()
    success(f"Re-armed {rearmed} item(s), recovered {recovered} stalled item(s)")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print JSON")
@coro
async def jobs(as_json: bool) -> None:
    """List the scheduled jobs."""
    async with _container(with_scheduler=True) as container:
        entries = container.scheduler.status() if container.scheduler else []
    if as_json:
        echo_json(entries)
        return
    header("Scheduled Jobs")
    width = max((len(entry["name"]) for entry in entries), default=4) + 2
    for entry in entries:
        click.echo(f"{entry['name']:<{width}} {entry['schedule']:<14} {entry['description']}")


@cli.command(name="run-job")
@click.argument("name")
@coro
async def run_job(name: str) -> None:
    """Run one scheduled job now."""
    async with _container(with_scheduler=True) as container:
        try:
            outcome = await container.scheduler.run_now(name)  # type: ignore[union-attr]
        except JobNotFoundError as exc:
            error(exc.detail)
            sys.exit(1)
    if not outcome["success"]:
        error(f"Job {name} failed: {outcome['error']}")
        sys.exit(1)
    success(f"Job {name} finished")
    echo_json(outcome["result"])


@cli.command(name="send-test")
@click.argument("email")
@click.option("--template", "template_type", default="user_welcome", show_default=True)
@click.option("--data", "raw_data", default=None, help="JSON object overriding the sample data")
@coro
async def send_test(email: str, template_type: str, raw_data: str | None) -> None:
    """Send one template with sample data to EMAIL."""
    data: dict[str, Any] = {}
    if raw_data:
        try:
            data = json.loads(raw_data)
        except json.JSONDecodeError as exc:
            raise click.BadParameter(f"invalid JSON: {exc}", param_hint="--data") from exc
        if not isinstance(data, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--data")

    async with _container() as container:
        try:
            result = await container.orchestrator.send_test(email, template_type, data)
        except TemplateNotFoundError as exc:
            error(exc.detail)
            sys.exit(1)
    if result.success:
        success(f"Sent via {result.method}")
    else:
        error(f"Send failed: {result.error}")
    echo_json(result.to_dict())


def main() -> None:
    """Entry point for the ``notify`` console script."""
    setup_logging()
    cli()


if __name__ == "__main__":
    main()
