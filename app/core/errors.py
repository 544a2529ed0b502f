from __future__ import annotations

from enum import IntEnum
from typing import Any


class ApplicationErrorCode(IntEnum):
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    NOT_FOUND = 404
    INTERNAL_SERVER_ERROR = 500
    CONTENT_POLICY_VIOLATION = 1003


class ApplicationError(Exception):
    """Error surfaced to API callers as a JSON body or a terminal SSE event."""

    def __init__(self, code: ApplicationErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def status_code(self) -> int:
        if self.code == ApplicationErrorCode.CONTENT_POLICY_VIOLATION:
            return int(ApplicationErrorCode.BAD_REQUEST)
        return int(self.code)

    def to_dict(self) -> dict[str, Any]:
        return {"code": int(self.code), "message": self.message}

    @classmethod
    def bad_request(cls, message: str = "Bad request.") -> "ApplicationError":
        return cls(ApplicationErrorCode.BAD_REQUEST, message)

    @classmethod
    def unauthorized(cls) -> "ApplicationError":
        return cls(ApplicationErrorCode.UNAUTHORIZED, "Unauthorized.")

    @classmethod
    def not_found(cls) -> "ApplicationError":
        return cls(ApplicationErrorCode.NOT_FOUND, "Resource not found.")

    @classmethod
    def content_policy_violation(cls) -> "ApplicationError":
        return cls(
            ApplicationErrorCode.CONTENT_POLICY_VIOLATION,
            "User message violates the content policy.",
        )

    @classmethod
    def internal_server_error(cls) -> "ApplicationError":
        return cls(ApplicationErrorCode.INTERNAL_SERVER_ERROR, "Internal server error.")
