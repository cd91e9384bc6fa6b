"""API error taxonomy shared by stores, operations and HTTP handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class ApiError(Exception):
    code: str
    message: str
    status: int = 400
    path: str | None = None
    details: list[dict] = field(default_factory=list)

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def to_body(self) -> dict:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.path:
            body["path"] = self.path
        if self.details:
            body["details"] = self.details
        return body


class MissingRequiredField(ApiError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("MISSING_REQUIRED_FIELD", message, 400, path)


class ValidationFailed(ApiError):
    def __init__(self, issues: list[dict]) -> None:
        first = issues[0] if issues else {}
        super().__init__(
            first.get("code") or "VALIDATION_FAILED",
            first.get("message") or "Invalid input",
            400,
            first.get("path"),
            list(issues),
        )


class BadRequest(ApiError):
    def __init__(self, message: str, path: str | None = None, code: str = "BAD_REQUEST") -> None:
        super().__init__(code, message, 400, path)


class NotFound(ApiError):
    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__("NOT_FOUND", message, 404, path)


class Unauthorized(ApiError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__("UNAUTHORIZED", message, 401)


class Forbidden(ApiError):
    def __init__(self, message: str = "Forbidden", path: str | None = None) -> None:
        super().__init__("FORBIDDEN", message, 403, path)


class ConflictForeignKey(ApiError):
    def __init__(self, message: str = "Referenced row does not exist", path: str | None = None) -> None:
        super().__init__("CONFLICT_FOREIGN_KEY", message, 409, path)


class Unexpected(ApiError):
    def __init__(self, message: str = "Unexpected server error") -> None:
        super().__init__("UNEXPECTED", message, 500)
