"""structlog setup shared by the CLI and embedding applications."""

import logging
import sys
from typing import TextIO

import structlog


def parse_log_level(level: str | int) -> int:
    """Resolve a level name such as ``"debug"`` to its numeric value.

    Raises:
        ValueError: If the name is not a standard level.
    """
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(level.strip().upper())
    if resolved is None:
        msg = f"Unknown log level: {level}"
        raise ValueError(msg)
    return resolved


def configure_logging(
    level: int = logging.INFO,
    output: TextIO = sys.stderr,
    json_format: bool = True,
) -> None:
    """Route structlog and stdlib logging to one stream.

    Module loggers are resolved on every call, so reconfiguring (as each
    CLI invocation does) takes effect immediately.

    Args:
        level: Minimum level emitted.
        output: Stream the rendered events are written to.
        json_format: JSON lines when true, the console renderer otherwise.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=output.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=output,
        level=level,
        force=True,
    )
