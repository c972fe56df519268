"""
Per-audit adapters plugged into the suggestion reconciler.

A strategy answers four questions about one audit type's findings:
- `build_key`: which persisted suggestion a finding corresponds to,
- `map_new_suggestion`: the creation payload for a finding seen for the first time,
- `merge_data`: the new `data` of a suggestion that is seen again,
- `should_update_suggestion`: whether a suggestion that disappeared may be marked stale.

All four must be pure; the reconciler may call them more than once per run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ...domain import Suggestion, SuggestionType
from .aggregate import domain_wide_key, is_domain_wide

# Unknown issue class.
UNRANKED = -1
# Aggregate suggestions sort ahead of every per-page suggestion.
SHOW_FIRST_RANK = 999_999


def validate_rank(rank: Any, *, allow_unranked: bool = False) -> int:
    if isinstance(rank, bool) or not isinstance(rank, int):
        raise ValueError(f"rank must be an integer, got {rank!r}")
    if rank == UNRANKED and allow_unranked:
        return rank
    if rank < 0:
        raise ValueError(f"rank must be >= 0, got {rank}")
    return rank


def default_build_key(data: dict[str, Any], *, audit_type: str) -> str:
    """Explicit `key`, then the aggregate key, then `url|audit_type`."""
    if not isinstance(data, dict):
        raise ValueError("finding must be a dict")
    explicit = str(data.get("key") or "").strip()
    if explicit:
        return explicit
    if is_domain_wide(data):
        return domain_wide_key(audit_type)
    url = str(data.get("url") or "").strip()
    if not url:
        raise ValueError("finding has neither a key nor a url")
    return f"{url}|{audit_type}"


# --- merge helpers ---


def keep_same_data(existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
    return dict(existing_data or {})


def keep_latest_data(existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
    return dict(new_data or {})


def shallow_merge_data(existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
    return {**(existing_data or {}), **(new_data or {})}


def overlay_machine_fields(
    existing_data: dict[str, Any],
    new_data: dict[str, Any],
    *,
    machine_fields: Iterable[str],
    transient_fields: Iterable[str] = (),
) -> dict[str, Any]:
    """
    Start from the persisted data and take only audit-owned fields from the new finding.

    Everything else (AI output, user overrides, editor state) is kept untouched.
    Transient control fields are dropped from the result.
    """
    out = dict(existing_data or {})
    src = new_data or {}
    for name in machine_fields:
        if name in src:
            out[name] = src[name]
    for name in transient_fields:
        out.pop(name, None)
    return out


class SuggestionStrategy(ABC):
    audit_type: str = ""
    suggestion_type: str = SuggestionType.CONTENT_UPDATE.value
    # Allow rank -1 for findings whose issue class is unknown.
    allow_unranked: bool = False

    def build_key(self, data: dict[str, Any]) -> str:
        return default_build_key(data, audit_type=self.audit_type)

    @abstractmethod
    def map_new_suggestion(self, data: dict[str, Any], opportunity_id: str) -> dict[str, Any]:
        """Creation payload: opportunity_id, type, rank, data and optionally kpi_deltas."""

    def merge_data(self, existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
        return keep_latest_data(existing_data, new_data)

    def should_update_suggestion(self, suggestion: Suggestion) -> bool:
        return True


@dataclass(kw_only=True)
class FunctionStrategy(SuggestionStrategy):
    """Strategy assembled from plain callables, for audits that need no class of their own."""

    map_fn: Callable[[dict[str, Any], str], dict[str, Any]]
    audit_type: str = ""
    suggestion_type: str = SuggestionType.CONTENT_UPDATE.value
    key_fn: Callable[[dict[str, Any]], str] | None = None
    merge_fn: Callable[[dict[str, Any], dict[str, Any]], dict[str, Any]] | None = None
    should_update_fn: Callable[[Suggestion], bool] | None = None
    allow_unranked: bool = False

    def __post_init__(self) -> None:
        if not str(self.audit_type or "").strip():
            raise ValueError("audit_type is required")

    def build_key(self, data: dict[str, Any]) -> str:
        if self.key_fn is not None:
            return self.key_fn(data)
        return default_build_key(data, audit_type=self.audit_type)

    def map_new_suggestion(self, data: dict[str, Any], opportunity_id: str) -> dict[str, Any]:
        return self.map_fn(data, opportunity_id)

    def merge_data(self, existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
        if self.merge_fn is not None:
            return self.merge_fn(existing_data, new_data)
        return keep_latest_data(existing_data, new_data)

    def should_update_suggestion(self, suggestion: Suggestion) -> bool:
        if self.should_update_fn is not None:
            return self.should_update_fn(suggestion)
        return True
