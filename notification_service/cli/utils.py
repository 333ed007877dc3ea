"""Utilities for running async operations and formatting output in CLI commands."""

from __future__ import annotations

import asyncio
from functools import wraps
import json
from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


def coro[T](f: Callable[..., Awaitable[T]]) -> Callable[..., T]:
    """Decorator that makes an async function synchronous for Click.

    Usage:
        @cli.command()
        @coro
        async def my_command():
            result = await some_async_function()
            click.echo(result)
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> T:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    click.secho(f"\n{message}", fg="cyan", bold=True)


def echo_json(data: Any) -> None:
    """Print ``data`` as indented JSON."""
    click.echo(json.dumps(data, indent=2, default=str))


__all__ = ["coro", "echo_json", "error", "header", "info", "success", "warning"]
