"""Outcome of an operator action that can fail for expected reasons."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode:
    NOT_FOUND = "not_found"
    CONTACT_DND = "contact_dnd"
    ALREADY_DND = "already_dnd"
    UNKNOWN = "unknown"


# Anything unlisted is a plain bad request.
HTTP_STATUS = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONTACT_DND: 409,
    ErrorCode.ALREADY_DND: 409,
}


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str, code: str = ErrorCode.UNKNOWN) -> "Result[T]":
        return cls(ok=False, error=error, error_code=code)

    @property
    def http_status(self) -> int:
        if self.ok:
            return 200
        return HTTP_STATUS.get(self.error_code, 400)

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True}
        return {"ok": False, "error": self.error, "error_code": self.error_code}
