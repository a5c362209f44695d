"""
Rich-based logger with tenant and customer context support for Unibox.

Context is added as a message prefix (``[T:tenant][U:customer]``) by a thin
wrapper around the standard logger instead of a custom format string, so
third-party loggers keep working with the same handlers.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from unibox.core.config.settings import settings


class CompactFormatter(logging.Formatter):
    """Formatter that shortens ``unibox.*`` module names to their last two parts."""

    def format(self, record):
        if record.name.startswith("unibox."):
            parts = record.name.split(".")
            if len(parts) > 2:
                record.name = ".".join(parts[-2:])
        return super().format(record)


_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)
_console = Console(theme=_theme)


class ContextLogger:
    """
    Logger wrapper that adds tenant and customer context to messages.

    Context variables are read on every call, so a logger created at import
    time still reports the tenant of the request being processed.
    """

    def __init__(
        self,
        logger: logging.Logger,
        tenant_id: str | None = None,
        customer_id: str | None = None,
    ):
        self.logger = logger
        self.tenant_id = tenant_id or "---"
        self.customer_id = customer_id or "---"

    def _format_message(self, message: str) -> str:
        from .context import get_current_customer_context, get_current_tenant_context

        current_tenant = get_current_tenant_context() or self.tenant_id
        current_customer = get_current_customer_context() or self.customer_id

        if current_tenant and current_tenant != "---":
            if current_customer and current_customer != "---":
                return f"[T:{current_tenant}][U:{current_customer}] {message}"
            return f"[T:{current_tenant}] {message}"
        elif current_customer and current_customer != "---":
            return f"[U:{current_customer}] {message}"
        return message

    def debug(self, message: str, *args, **kwargs) -> None:
        self.logger.debug(self._format_message(message), *args, **kwargs)

    def info(self, message: str, *args, **kwargs) -> None:
        self.logger.info(self._format_message(message), *args, **kwargs)

    def warning(self, message: str, *args, **kwargs) -> None:
        self.logger.warning(self._format_message(message), *args, **kwargs)

    def error(self, message: str, *args, **kwargs) -> None:
        self.logger.error(self._format_message(message), *args, **kwargs)

    def critical(self, message: str, *args, **kwargs) -> None:
        self.logger.critical(self._format_message(message), *args, **kwargs)

    def exception(self, message: str, *args, **kwargs) -> None:
        self.logger.exception(self._format_message(message), *args, **kwargs)

    def bind(self, **kwargs) -> ContextLogger:
        """
        Return a new ContextLogger with additional or updated context.

        Example:
            logger.bind(tenant_id="tenant-1", customer_id="15551234567")
        """
        return ContextLogger(
            self.logger,
            tenant_id=kwargs.get("tenant_id", self.tenant_id),
            customer_id=kwargs.get("customer_id", self.customer_id),
        )


def setup_logging(
    *,
    level: str = "INFO",
    mode: str = "PROD",
    log_dir: str | None = None,
    console_fmt: str | None = None,
    file_fmt: str | None = None,
) -> None:
    """
    Initialize the root logger with Rich formatting.

    Parameters
    ----------
    level : str
        Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
    mode : str
        "DEV" creates daily log files + console; anything else → console only
    log_dir : str, optional
        Directory for log files (DEV mode only)
    """
    lvl = level.upper()
    lvl = lvl if lvl in ("DEBUG", "INFO", "WARNING", "ERROR") else "INFO"

    console_format = console_fmt or "[%(name)s] %(message)s"
    file_format = file_fmt or "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

    rich_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_time=True,
        show_level=True,
        markup=False,
    )
    rich_handler.setFormatter(CompactFormatter(console_format))

    handlers: list[logging.Handler] = [rich_handler]

    if mode.upper() == "DEV" and log_dir:
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, f"unibox_{datetime.now():%Y%m%d}.log")
        file_handler = logging.FileHandler(logfile, encoding="utf-8")
        file_handler.setFormatter(CompactFormatter(file_format))
        handlers.append(file_handler)
        _console.print(f"[green]DEV mode:[/] console + file → {logfile}")
    else:
        _console.print(f"Logging configured for mode '{mode}'. Console only.")

    logging.basicConfig(level=lvl, handlers=handlers, force=True)

    # aiohttp access noise is not useful next to our own request logs
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    logging.getLogger("UniboxLoggerSetup").info(f"Logging initialized ({lvl})")


def setup_app_logging() -> None:
    """Initialize application logging. Called once during app start-up."""
    setup_logging(
        level=settings.log_level,
        mode="DEV" if settings.is_development else "PROD",
        log_dir=settings.log_dir if settings.is_development else None,
    )


def get_logger(name: str) -> ContextLogger:
    """
    Get a logger that automatically uses request context variables.

    Args:
        name: Logger name (usually __name__)

    Returns:
        ContextLogger instance with automatic context from context variables
    """
    from .context import get_current_customer_context, get_current_tenant_context

    return ContextLogger(
        logging.getLogger(name),
        tenant_id=get_current_tenant_context(),
        customer_id=get_current_customer_context(),
    )


def get_app_logger() -> ContextLogger:
    """Get application logger for start-up and shutdown events."""
    return get_logger("unibox.app")
