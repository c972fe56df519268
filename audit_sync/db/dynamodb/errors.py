from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class DdbError(Exception):
    """A failed DynamoDB request, already classified.

    The sync services never let these escape raw: they are wrapped into
    fetch/create errors that name the site and audit being processed.
    """

    message: str
    operation: str | None = None
    table_name: str | None = None
    key: dict[str, Any] | None = None
    aws_error_code: str | None = None
    aws_request_id: str | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        if self.aws_error_code:
            return f"{self.message} [{self.aws_error_code}]"
        return self.message

    def log_fields(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "error_kind": type(self).__name__,
            "error_code": self.aws_error_code,
            "aws_request_id": self.aws_request_id,
            "operation": self.operation,
        }


# Conditional check failed, e.g. creating an item that already exists.
@dataclass(slots=True)
class DdbConflict(DdbError):
    pass


@dataclass(slots=True)
class DdbValidation(DdbError):
    pass


@dataclass(slots=True)
class DdbThrottled(DdbError):
    pass


# Table missing, credentials rejected, or the client could not reach the service.
@dataclass(slots=True)
class DdbUnavailable(DdbError):
    pass


@dataclass(slots=True)
class DdbInternal(DdbError):
    pass
