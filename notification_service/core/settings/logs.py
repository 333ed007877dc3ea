"""Logging configuration settings."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=INFO, LOG_JSON=true, LOG_FILE_ENABLED=false
    """

    service_name: str = Field(
        default="notification-service",
        description="Service name to include in log records (static field in JSON)",
    )
    level: LogLevel = Field(
        default="INFO",
        description="Root logger level (DEBUG|INFO|WARNING|ERROR|CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias=AliasChoices("LOG_JSON", "LOG_JSON_LOGS", "json_logs"),
        description="Enable JSON Lines (JSONL) formatted structured logs",
    )
    console_enabled: bool = Field(default=True, description="Enable console/stderr logging")
    file_enabled: bool = Field(default=False, description="Enable rotating file logging")
    file_path: Path = Field(
        default=Path("logs/notification-service.log.jsonl"),
        description="Path to log file when file logging is enabled.",
    )
    file_max_bytes: int = Field(
        default=10_485_760,  # 10 MiB
        ge=1024,
        le=1_073_741_824,
        description="Maximum log file size in bytes before rotation.",
    )
    file_backup_count: int = Field(default=5, ge=0, le=100, description="Rotated files to keep.")
    include_context: bool = Field(
        default=True,
        description="Inject context variables (job, recipient) into every record",
    )
    capture_warnings: bool = Field(default=True, description="Route warnings module through logging")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Convert settings to ``configure_logging`` keyword arguments."""
        return {
            "log_level": self.level,
            "json_logs": self.json_logs,
            "console_enabled": self.console_enabled,
            "file_path": self.file_path if self.file_enabled else None,
            "file_max_bytes": self.file_max_bytes,
            "file_backup_count": self.file_backup_count,
            "include_context": self.include_context,
            "capture_warnings": self.capture_warnings,
            "service_name": self.service_name,
        }


__all__ = ["LogLevel", "LoggingSettings"]
