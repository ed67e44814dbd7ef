from __future__ import annotations

import logging
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import structlog

_SENSITIVE_ATTRIBUTE_TOKENS: frozenset[str] = frozenset(
    {
        "api_key",
        "authorization",
        "cookie",
        "description",
        "password",
        "raw_video",
        "secret",
        "token",
    }
)
_MAX_STRING_LENGTH = 160

AttributeValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)
        return


class StructuredLogTelemetrySink:
    def __init__(self) -> None:
        self._logger = structlog.get_logger("stella_clips.telemetry")

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info(
            "telemetry",
            telemetry_event=event_name,
            **dict(attributes),
        )


class TelemetrySpan:
    """Attributes collected while a timed operation runs."""

    def __init__(self) -> None:
        self.attributes: dict[str, Any] = {}

    def set(self, **attributes: Any) -> None:
        self.attributes.update(attributes)


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(
            event_name=event_name,
            attributes=_sanitize_attributes(attributes),
        )

    @contextmanager
    def timed(self, event_name: str, **attributes: Any) -> Iterator[TelemetrySpan]:
        """
        Emit `event_name` once the block exits, with `duration_ms` and `outcome`.

        Exceptions propagate unchanged; the event records `outcome=error` and the
        exception type.
        """
        span = TelemetrySpan()
        started = time.perf_counter()
        try:
            yield span
        except Exception as exc:
            self.emit(
                event_name,
                **attributes,
                **span.attributes,
                outcome="error",
                error_type=type(exc).__name__,
                duration_ms=_elapsed_ms(started),
            )
            raise
        self.emit(
            event_name,
            **attributes,
            **span.attributes,
            outcome="ok",
            duration_ms=_elapsed_ms(started),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger("stella_clips.telemetry").warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, AttributeValue]:
    sanitized: dict[str, AttributeValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if _is_sensitive_attribute(key):
            sanitized[key] = "[redacted]"
            continue
        sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def _is_sensitive_attribute(key: str) -> bool:
    return any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS)


def _sanitize_value(value: Any) -> AttributeValue:
    if value is None:
        return None
    if isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = " ".join(value.split())
        if len(compact) <= _MAX_STRING_LENGTH:
            return compact
        return f"{compact[:_MAX_STRING_LENGTH]}..."
    if isinstance(value, list | tuple | frozenset | set):
        return len(value)
    return str(type(value).__name__)
