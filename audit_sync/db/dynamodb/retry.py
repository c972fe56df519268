from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from .errors import (
    DdbConflict,
    DdbError,
    DdbInternal,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_s: float = 0.05
    max_delay_s: float = 1.0


_THROTTLE_CODES = {
    "ProvisionedThroughputExceededException",
    "ThrottlingException",
    "RequestLimitExceeded",
    "InternalServerError",
    "ServiceUnavailable",
}

# Error code -> (error class, message, retryable)
_CODE_MAP: dict[str, tuple[type[DdbError], str, bool]] = {
    "ConditionalCheckFailedException": (DdbConflict, "DynamoDB conditional check failed", False),
    "ValidationException": (DdbValidation, "DynamoDB request validation failed", False),
    "ResourceNotFoundException": (DdbUnavailable, "DynamoDB table not found", False),
    "AccessDeniedException": (DdbUnavailable, "DynamoDB access denied", False),
    "UnrecognizedClientException": (DdbUnavailable, "DynamoDB access denied", False),
}


def _backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    # Full jitter exponential backoff.
    exp = min(policy.max_delay_s, policy.base_delay_s * (2 ** max(0, attempt - 1)))
    return random.random() * exp


def _client_error_details(e: ClientError) -> tuple[str, str | None]:
    resp = e.response or {}
    code = str((resp.get("Error") or {}).get("Code") or "")
    request_id = (resp.get("ResponseMetadata") or {}).get("RequestId")
    return code, request_id


def map_error(
    *,
    operation: str,
    table_name: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> DdbError:
    if isinstance(exc, DdbError):
        return exc

    common: dict[str, Any] = {"operation": operation, "table_name": table_name, "key": key, "cause": exc}

    if isinstance(exc, ClientError):
        code, request_id = _client_error_details(exc)
        common["aws_error_code"] = code or None
        if code in _CODE_MAP:
            cls, message, retryable = _CODE_MAP[code]
            return cls(message=message, aws_request_id=request_id, retryable=retryable, **common)
        if code in _THROTTLE_CODES:
            return DdbThrottled(
                message="DynamoDB request throttled or unavailable",
                aws_request_id=request_id,
                retryable=True,
                **common,
            )
        return DdbInternal(
            message=f"DynamoDB request failed ({code or 'ClientError'})",
            aws_request_id=request_id,
            **common,
        )

    if isinstance(exc, BotoCoreError):
        return DdbUnavailable(message="DynamoDB client error", retryable=True, **common)

    return DdbInternal(message=f"Unexpected DynamoDB error: {exc}", **common)


def ddb_call(
    operation: str,
    fn: Callable[[], T],
    *,
    table_name: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    """Run one DynamoDB request, retrying only throttling/transient failures."""
    policy = retry_policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))

    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:  # noqa: BLE001
            mapped = map_error(operation=operation, table_name=table_name, key=key, exc=e)
            if not mapped.retryable or attempt >= attempts:
                if mapped is e:
                    raise
                raise mapped from e
            time.sleep(_backoff_delay(policy, attempt))
            attempt += 1
