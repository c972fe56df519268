from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class AuditSyncError(Exception):
    """Base error raised by the opportunity/suggestion sync services.

    Persistence failures are wrapped into one of the subclasses below so the
    calling audit handler gets the site (and audit) it was working on.
    """

    message: str
    site_id: str | None = None
    audit_id: str | None = None
    operation: str | None = None
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class OpportunityFetchError(AuditSyncError):
    pass


@dataclass(slots=True)
class OpportunityCreateError(AuditSyncError):
    pass


@dataclass(slots=True)
class OpportunitySaveError(AuditSyncError):
    pass


@dataclass(slots=True)
class SuggestionFetchError(AuditSyncError):
    pass


@dataclass(slots=True)
class SuggestionCreateError(AuditSyncError):
    created_count: int = 0
    failed_count: int = 0


@dataclass(slots=True)
class SuggestionUpdateError(AuditSyncError):
    pass
