from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings

ROOT_LOGGER_NAME = "stella_clips"
TELEMETRY_LOGGER_NAME = "stella_clips.telemetry"
LOG_FILE_NAME = "stella-clips.log"
TELEMETRY_LOG_FILE_NAME = "stella-clips-telemetry.log"
# Server loggers that should share the application handlers.
_ROUTED_LOGGER_NAMES: tuple[str, ...] = ("uvicorn", "uvicorn.error")


@dataclass(frozen=True)
class LogPaths:
    application: Path
    telemetry: Path


def configure_application_logging(settings: AppSettings) -> LogPaths:
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    paths = LogPaths(
        application=log_dir / LOG_FILE_NAME,
        telemetry=log_dir / TELEMETRY_LOG_FILE_NAME,
    )

    _configure_structlog()

    console_level = _resolve_log_level(settings.log_level)
    handlers = _build_application_handlers(paths.application, console_level=console_level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    _attach_handlers(logger, handlers, level=logging.DEBUG)
    for routed_name in _ROUTED_LOGGER_NAMES:
        _attach_handlers(logging.getLogger(routed_name), handlers, level=console_level)
    _configure_telemetry_logger(paths.telemetry)

    logger.info(
        "logging configured console_level=%s file_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_level),
        "DEBUG",
        paths.application,
        paths.telemetry,
    )
    return paths


def _resolve_log_level(raw_level: str) -> int:
    normalized = raw_level.strip().upper()
    resolved = getattr(logging, normalized, None)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _build_application_handlers(log_file: Path, *, console_level: int) -> list[logging.Handler]:
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(_build_file_formatter())

    console_stream = sys.stdout
    console_handler = logging.StreamHandler(stream=console_stream)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        _build_console_formatter(enable_colors=_stream_supports_color(console_stream))
    )
    return [console_handler, file_handler]


def _attach_handlers(
    logger: logging.Logger,
    handlers: list[logging.Handler],
    *,
    level: int,
) -> None:
    logger.setLevel(level)
    logger.propagate = False
    _reset_handlers(logger)
    for handler in handlers:
        logger.addHandler(handler)


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _configure_telemetry_logger(log_file: Path) -> None:
    telemetry_logger = logging.getLogger(TELEMETRY_LOGGER_NAME)
    telemetry_file_handler = logging.FileHandler(log_file, encoding="utf-8")
    telemetry_file_handler.setLevel(logging.INFO)
    telemetry_file_handler.setFormatter(_build_file_formatter())
    _attach_handlers(telemetry_logger, [telemetry_file_handler], level=logging.INFO)


def _build_console_formatter(*, enable_colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _build_file_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            _add_record_metadata,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _drop_color_message_key,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _drop_color_message_key(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # uvicorn duplicates every message under `color_message`.
    event_dict.pop("color_message", None)
    return event_dict


def _add_record_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["pathname"] = record.pathname
        event_dict["lineno"] = record.lineno
        event_dict["func_name"] = record.funcName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except (OSError, ValueError):
            return False
    return False
