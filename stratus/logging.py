"""Logging configuration for stratus.

Structured logging via loguru. Like any library, stratus is silent by
default; the host orchestrator opts in with ``setup_logging``. Every module
binds a ``component`` (identity, provisioning, teardown, nova, ...) which is
shown on each line and can be used to narrow the output.

Example:
    from stratus import LogConfig, setup_logging, teardown_logging

    handlers = setup_logging(LogConfig(level="DEBUG", components={"provisioning"}))
    try:
        await provider.allocate(template, ["a", "b"], min_count=2)
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

logger.disable("stratus")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]


def _component(record: Record) -> str:
    extra = record["extra"]
    return extra.get("component") or extra.get("provider") or record["name"]


def _console_format(record: Record) -> str:
    record["extra"]["_component"] = _component(record)
    return (
        "<green>{time:HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[_component]: <12}</cyan> | "
        "<level>{message}</level>\n{exception}"
    )


def _file_format(record: Record) -> str:
    record["extra"]["_component"] = _component(record)
    return (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[_component]} | "
        "{name}:{function}:{line} - {message}\n{exception}"
    )


def _make_filter(components: frozenset[str] | None) -> Callable[[Record], bool]:
    def accept(record: Record) -> bool:
        if not record["name"] or not record["name"].startswith("stratus"):
            return False
        return components is None or _component(record) in components

    return accept


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum log level for the console sink.
        file: Path to a log file. The file sink always captures DEBUG.
        console: Whether to log to stderr.
        components: Only log these components (e.g. ``{"provisioning", "nova"}``).
            None logs everything.
        serialize: Write the file sink as JSON lines for log shippers.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    components: Iterable[str] | None = None
    serialize: bool = False
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig | None = None) -> list[int]:
    """Enable stratus logging and return the handler ids for teardown."""
    config = config or LogConfig()
    accept = _make_filter(frozenset(config.components) if config.components is not None else None)
    logger.enable("stratus")
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(sys.stderr, level=config.level, format=_console_format, colorize=True, filter=accept)
        )

    if config.file:
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=_file_format,
                serialize=config.serialize,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,  # tracebacks may carry credentials
                enqueue=True,
                filter=accept,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("stratus")
