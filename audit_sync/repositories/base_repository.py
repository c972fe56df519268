"""
Persistence interface consumed by the sync services.

The services only ever talk to an `AuditStore`; the DynamoDB implementation
lives in `audit_store_repo`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

from ..domain import (
    BulkCreateResult,
    FixEntity,
    FixEntityStatus,
    Opportunity,
    Suggestion,
    SuggestionStatus,
)


class AuditStore(ABC):
    """Async store over opportunities, their suggestions and fix entities."""

    # --- opportunities ---

    @abstractmethod
    async def list_opportunities_by_site_and_status(self, site_id: str, status: str) -> list[Opportunity]:
        """List opportunities of a site in one status."""

    @abstractmethod
    async def create_opportunity(self, payload: dict[str, Any]) -> Opportunity:
        """Create an opportunity from a snake_case payload."""

    @abstractmethod
    async def save_opportunity(self, opportunity: Opportunity) -> Opportunity:
        """Persist the current in-memory state of an opportunity."""

    # --- suggestions ---

    @abstractmethod
    async def list_suggestions(self, opportunity_id: str) -> list[Suggestion]:
        """All suggestions of an opportunity, any status."""

    @abstractmethod
    async def create_suggestions(self, payloads: list[dict[str, Any]]) -> BulkCreateResult:
        """
        Create suggestions in bulk.

        Failures are reported per item in `error_items`; items created before a
        failure stay persisted.
        """

    @abstractmethod
    async def save_suggestion(self, suggestion: Suggestion) -> Suggestion:
        """Persist the current in-memory state of a suggestion."""

    @abstractmethod
    async def bulk_update_status(
        self,
        suggestions: Iterable[Suggestion],
        status: SuggestionStatus,
        *,
        updated_by: str | None = None,
    ) -> list[Suggestion]:
        """Move many suggestions to one status in a single batched write."""

    # --- fix entities ---

    @abstractmethod
    async def add_fix_entities(self, payloads: list[dict[str, Any]]) -> list[FixEntity]:
        """Record fix entities against an opportunity."""

    @abstractmethod
    async def list_fix_entities_by_status(self, opportunity_id: str, status: FixEntityStatus) -> list[FixEntity]:
        """Fix entities of an opportunity in one status."""

    @abstractmethod
    async def list_suggestions_for_fix_entity(self, fix_entity: FixEntity) -> list[Suggestion]:
        """Suggestions a fix entity was recorded for."""

    @abstractmethod
    async def save_fix_entity(self, fix_entity: FixEntity) -> FixEntity:
        """Persist the current in-memory state of a fix entity."""
