from .entities import AuditContext, BulkCreateResult, FixEntity, ItemError, Opportunity, Suggestion
from .statuses import FixEntityStatus, OpportunityStatus, SuggestionStatus, SuggestionType

__all__ = [
    "AuditContext",
    "BulkCreateResult",
    "FixEntity",
    "FixEntityStatus",
    "ItemError",
    "Opportunity",
    "OpportunityStatus",
    "Suggestion",
    "SuggestionStatus",
    "SuggestionType",
]
