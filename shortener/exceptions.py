"""Error types raised by the short-link engine and its store.

``ShortenerError`` is the only exception the engine lets escape its public
operations. The failure is identified by ``kind`` (an ``ErrorKind``), with the
offending short code or attempt count attached where relevant::

    try:
        url = await service.resolve(code)
    except ShortenerError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            ...

``ShortCodeCollisionError`` never leaves the engine: the store raises it when the
unique constraint rejects a short code and the allocation loop retries.
"""

from typing import Optional

from shortener.enums import ErrorKind

__all__ = ["ShortCodeCollisionError", "ShortenerError"]


class ShortenerError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        short_code: Optional[str] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.short_code = short_code
        self.attempts = attempts

    def __repr__(self) -> str:
        return f"ShortenerError(kind={self.kind.value!r}, message={self.message!r})"

    @classmethod
    def invalid_input(cls, message: str) -> "ShortenerError":
        return cls(ErrorKind.INVALID_INPUT, message)

    @classmethod
    def not_found(cls, short_code: str) -> "ShortenerError":
        return cls(ErrorKind.NOT_FOUND, f"Short code not found: {short_code}", short_code=short_code)

    @classmethod
    def exhausted(cls, attempts: int) -> "ShortenerError":
        return cls(
            ErrorKind.CODE_GENERATION_EXHAUSTED,
            f"Unable to generate unique short code after {attempts} attempts",
            attempts=attempts,
        )

    @classmethod
    def backend_failure(cls, operation: str, exc: BaseException) -> "ShortenerError":
        return cls(ErrorKind.BACKEND_FAILURE, f"Store failure during {operation}: {exc}")


class ShortCodeCollisionError(Exception):
    """Raised by a store when a short code is already taken at insert time."""

    def __init__(self, short_code: str):
        super().__init__(f"Short code collision: {short_code}")
        self.short_code = short_code
