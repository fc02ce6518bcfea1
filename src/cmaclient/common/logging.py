"""
Structured logging configuration.

Library modules log through the standard ``logging`` module. Applications
embedding the client call ``Logging.configure_logging`` once to route both
stdlib records and structlog events through the same renderer, JSON
(serialized with orjson) or colored console text, with context variables
such as the correlation id, space and environment merged into every line.
"""

from __future__ import annotations

import logging
import sys
import uuid
from typing import Any

import orjson
import structlog

__all__ = ("Logging", "get_logger")


def _to_level(level: int | str) -> int:
    """
    Convert a level name to its integer value (e.g., "INFO" -> 20).

    Raises:
        KeyError: If the level name is unknown.
    """
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping()[level.upper()]


def _orjson_dumps(event_dict: dict, *, default: Any) -> str:
    return orjson.dumps(event_dict, default=default).decode()


class Logging:
    """Logging setup and context helpers for applications using the client."""

    @staticmethod
    def configure_logging(
        service: str = "cmaclient",
        level: int | str = "INFO",
        json_format: bool = True,
        utc: bool = True,
        stream: Any = None,
    ) -> None:
        """
        Initialize stdlib and structlog with one output format.

        Args:
            service: Non-empty service identifier bound into each log record
            level: Numeric or symbolic log level (e.g., "INFO" or 20)
            json_format: If False, use colored console text instead of JSON
            utc: Use UTC for ISO timestamps
            stream: Output stream, stdout by default

        Raises:
            ValueError: If service parameter is empty
        """
        if not service:
            raise ValueError("`service` must be a non-empty string.")

        lvl = _to_level(level)

        shared_processors: list[structlog.types.Processor] = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=utc),
        ]

        renderer = (
            structlog.processors.JSONRenderer(serializer=_orjson_dumps)
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )

        formatter = structlog.stdlib.ProcessorFormatter(
            processor=renderer,
            foreign_pre_chain=shared_processors,
        )
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(formatter)

        root = logging.getLogger()
        root.handlers.clear()
        root.addHandler(handler)
        root.setLevel(lvl)

        structlog.configure(
            processors=[*shared_processors, renderer],
            wrapper_class=structlog.make_filtering_bound_logger(lvl),
            logger_factory=structlog.PrintLoggerFactory(stream or sys.stdout),
            cache_logger_on_first_use=True,
        )

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(service=service)

    @staticmethod
    def get_logger(name: str) -> structlog.stdlib.BoundLogger:  # type: ignore[override]
        """
        Return a structlog logger.

        Args:
            name: Logger name, typically __name__ of the calling module
        """
        return structlog.get_logger(name)

    @staticmethod
    def set_correlation_id(correlation_id: str | None = None) -> str:
        """
        Bind a correlation id to the current context, generating one if None.

        Returns:
            The correlation ID that was set
        """
        cid = correlation_id if correlation_id else str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(correlation_id=cid)
        return cid

    @staticmethod
    def bind_resource_context(
        space_id: str | None = None, environment_id: str | None = None
    ) -> dict[str, str]:
        """Attach the space and environment being worked on to later log lines."""
        ctx = {
            k: v
            for k, v in (("space_id", space_id), ("environment_id", environment_id))
            if v is not None
        }
        structlog.contextvars.bind_contextvars(**ctx)
        return ctx

    @staticmethod
    def clear_context() -> None:
        """Reset all context variables, e.g. at the end of a job."""
        structlog.contextvars.clear_contextvars()


get_logger = Logging.get_logger
