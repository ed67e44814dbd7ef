from __future__ import annotations

from collections.abc import Sequence


class StellaClipsError(Exception):
    pass


class MalformedInputError(StellaClipsError):
    pass


class NotFoundError(StellaClipsError):
    def __init__(self, message: str, *, kind: str, key: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.key = key


class QueryValidationError(StellaClipsError):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        provided: object = None,
        available: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.field = field
        self.provided = provided
        self.available = tuple(available) if available is not None else None

    def to_detail(self) -> dict[str, object]:
        detail: dict[str, object] = {"message": str(self)}
        if self.field is not None:
            detail["field"] = self.field
        if self.provided is not None:
            detail["provided"] = self.provided
        if self.available is not None:
            detail["available"] = list(self.available)
        return detail


class TransientIOError(StellaClipsError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TerminalClientError(StellaClipsError):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def classify_http_status(status_code: int, message: str) -> StellaClipsError:
    """Map a non-2xx status to the retry classification used by callers."""
    if 400 <= status_code < 500:
        return TerminalClientError(message, status_code=status_code)
    return TransientIOError(message, status_code=status_code)
