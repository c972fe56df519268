from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from .statuses import FixEntityStatus, OpportunityStatus, SuggestionStatus


@dataclass(slots=True)
class AuditContext:
    """
    What an audit run knows about itself when it hands findings to the sync services.
    """

    site_id: str
    audit_id: str
    site_url: str | None = None
    # Sites that require validation get new suggestions in PENDING_VALIDATION.
    requires_validation: bool = False
    delivery_type: str | None = None

    def __post_init__(self) -> None:
        if not str(self.site_id or "").strip():
            raise ValueError("site_id is required")
        if not str(self.audit_id or "").strip():
            raise ValueError("audit_id is required")


@dataclass(slots=True)
class Opportunity:
    id: str
    site_id: str
    type: str
    status: OpportunityStatus = OpportunityStatus.NEW
    audit_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    guidance: dict[str, Any] = field(default_factory=dict)
    title: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    origin: str | None = None
    runbook: str | None = None
    updated_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


@dataclass(slots=True)
class Suggestion:
    id: str
    opportunity_id: str
    type: str
    rank: int
    status: SuggestionStatus = SuggestionStatus.NEW
    data: dict[str, Any] = field(default_factory=dict)
    kpi_deltas: dict[str, Any] | None = None
    updated_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


@dataclass(slots=True)
class FixEntity:
    id: str
    opportunity_id: str
    type: str | None
    status: FixEntityStatus = FixEntityStatus.PENDING
    change_details: dict[str, Any] = field(default_factory=dict)
    suggestion_ids: list[str] = field(default_factory=list)
    executed_at: str | None = None
    updated_by: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["status"] = self.status.value
        return out


@dataclass(slots=True)
class ItemError:
    """One finding (or creation payload) that could not be processed."""

    item: Any
    error: str
    key: str | None = None
    stage: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"item": self.item, "error": self.error, "key": self.key, "stage": self.stage}


@dataclass(slots=True)
class BulkCreateResult:
    created_items: list[Suggestion] = field(default_factory=list)
    error_items: list[ItemError] = field(default_factory=list)
