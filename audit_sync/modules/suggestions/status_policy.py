from __future__ import annotations

from ...domain import SuggestionStatus

RESOLVED_STATUSES: frozenset[SuggestionStatus] = frozenset({SuggestionStatus.OUTDATED, SuggestionStatus.FIXED})

ACTIVE_STATUSES: frozenset[SuggestionStatus] = frozenset(
    {
        SuggestionStatus.NEW,
        SuggestionStatus.APPROVED,
        SuggestionStatus.IN_PROGRESS,
        SuggestionStatus.PENDING_VALIDATION,
        SuggestionStatus.SKIPPED,
        SuggestionStatus.ERROR,
    }
)

# Human decisions and terminal records are never overwritten by staleness marking.
STALENESS_EXEMPT_STATUSES: frozenset[SuggestionStatus] = frozenset(
    {
        SuggestionStatus.OUTDATED,
        SuggestionStatus.FIXED,
        SuggestionStatus.SKIPPED,
        SuggestionStatus.ERROR,
    }
)


def is_active(status: str | SuggestionStatus) -> bool:
    return SuggestionStatus.parse(status) in ACTIVE_STATUSES


def is_resolved(status: str | SuggestionStatus) -> bool:
    return SuggestionStatus.parse(status) in RESOLVED_STATUSES


def is_exempt_from_staleness(status: str | SuggestionStatus) -> bool:
    return SuggestionStatus.parse(status) in STALENESS_EXEMPT_STATUSES


def initial_status(*, requires_validation: bool = False) -> SuggestionStatus:
    """Status a freshly detected suggestion starts in."""
    return SuggestionStatus.PENDING_VALIDATION if requires_validation else SuggestionStatus.NEW


def reopen_status(*, requires_validation: bool = False) -> SuggestionStatus:
    """Status an OUTDATED suggestion goes back to when its issue is detected again."""
    return initial_status(requires_validation=requires_validation)
