"""
Suggestion reconciler.

Converges the persisted suggestions of one opportunity onto the findings of the
latest audit run:
- findings whose key already exists are merged into that suggestion,
- findings with a new key become new suggestions,
- suggestions whose key was not seen this run are marked stale (unless vetoed).

Running it twice with the same findings is a no-op the second time.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ...domain import AuditContext, ItemError, Opportunity, Suggestion, SuggestionStatus
from ...errors import SuggestionCreateError, SuggestionFetchError, SuggestionUpdateError
from ...observability.context import bind_audit_context
from ...observability.logging import get_logger, safe_sample
from ...repositories.base_repository import AuditStore
from ...settings import get_settings
from .status_policy import initial_status, is_exempt_from_staleness, reopen_status
from .strategies import SuggestionStrategy, validate_rank

log = get_logger("suggestion_sync")


@dataclass(slots=True)
class SyncResult:
    created: list[Suggestion] = field(default_factory=list)
    updated: list[Suggestion] = field(default_factory=list)
    unchanged: list[Suggestion] = field(default_factory=list)
    outdated: list[Suggestion] = field(default_factory=list)
    vetoed: list[Suggestion] = field(default_factory=list)
    reopened: list[Suggestion] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    duplicates: int = 0

    def counts(self) -> dict[str, int]:
        return {
            "created": len(self.created),
            "updated": len(self.updated),
            "unchanged": len(self.unchanged),
            "outdated": len(self.outdated),
            "vetoed": len(self.vetoed),
            "reopened": len(self.reopened),
            "errors": len(self.errors),
            "duplicates": self.duplicates,
        }


def _checked_key(key: Any) -> str:
    if not isinstance(key, str) or not key.strip():
        raise TypeError(f"build_key returned {key!r}, expected a non-empty str")
    return key


def _check_payload(payload: dict[str, Any]) -> None:
    data = payload.get("data")
    if not isinstance(data, dict):
        raise TypeError(f"payload data must be a dict, got {type(data).__name__}")
    if "type" in payload and not str(payload.get("type") or "").strip():
        raise ValueError("payload type must be non-empty")
    if payload.get("status") is not None:
        SuggestionStatus.parse(payload["status"])


def _item_identity(item: Any) -> Any:
    if isinstance(item, dict):
        return item.get("key") or item.get("url")
    return None


def _index_existing(
    existing: list[Suggestion],
    strategy: SuggestionStrategy,
) -> tuple[dict[str, Suggestion], dict[str, str]]:
    """
    Map key -> suggestion, plus suggestion id -> key.

    When several suggestions share a key the first active one is the merge
    target; the others still take part in staleness marking.
    """
    by_key: dict[str, Suggestion] = {}
    key_by_id: dict[str, str] = {}
    for s in existing:
        try:
            key = _checked_key(strategy.build_key(s.data))
        except Exception as e:
            # No key means we cannot tell if it is stale; leave it alone.
            log.warning("existing_suggestion_key_failed", suggestion_id=s.id, error=str(e))
            continue
        key_by_id[s.id] = key
        current = by_key.get(key)
        if current is None:
            by_key[key] = s
            continue
        log.warning("existing_suggestion_key_duplicate", key=key, kept_id=current.id, duplicate_id=s.id)
        if is_exempt_from_staleness(current.status) and not is_exempt_from_staleness(s.status):
            by_key[key] = s
    return by_key, key_by_id


async def sync_suggestions(
    *,
    opportunity: Opportunity,
    new_data: Iterable[dict[str, Any]] | None,
    store: AuditStore,
    strategy: SuggestionStrategy,
    context: AuditContext | None = None,
    status_to_set_for_outdated: SuggestionStatus = SuggestionStatus.OUTDATED,
    scraped_urls: Iterable[str] | None = None,
    reopen_outdated: bool = False,
) -> SyncResult:
    """
    Reconcile `new_data` (one dict per finding) into the suggestions of `opportunity`.

    Writes happen in this order: merged updates, the bulk stale-status
    transition, then creations. A persistence failure aborts the remainder.
    Creation failures (including partially failed batches) raise
    `SuggestionCreateError` after the other writes; suggestions created before
    the failure stay persisted.

    `scraped_urls` restricts staleness marking to suggestions whose page was
    actually scraped this run. `reopen_outdated` moves a re-detected OUTDATED
    suggestion back to NEW (PENDING_VALIDATION when the site requires validation).
    """
    s = get_settings()
    actor = s.sync_actor
    site_id = opportunity.site_id
    audit_id = context.audit_id if context else opportunity.audit_id
    requires_validation = bool(context.requires_validation) if context else False
    target_status = SuggestionStatus.parse(status_to_set_for_outdated)
    scraped = {str(u) for u in scraped_urls} if scraped_urls is not None else None
    findings = list(new_data or [])

    with bind_audit_context(site_id=site_id, audit_id=audit_id, audit_type=strategy.audit_type or opportunity.type):
        result = SyncResult()

        try:
            existing = await store.list_suggestions(opportunity.id)
        except Exception as e:
            raise SuggestionFetchError(
                message=f"Failed to fetch suggestions for siteId {site_id}: {e}",
                site_id=site_id,
                audit_id=audit_id,
                operation="list_suggestions",
                cause=e,
            ) from e

        by_key, key_by_id = _index_existing(existing, strategy)

        seen: set[str] = set()
        to_save: list[Suggestion] = []
        to_create: list[dict[str, Any]] = []

        for item in findings:
            try:
                key = _checked_key(strategy.build_key(item))
            except Exception as e:
                log.warning("suggestion_key_failed", item=_item_identity(item), error=str(e))
                result.errors.append(ItemError(item=item, error=str(e), stage="build_key"))
                continue

            if key in seen:
                log.warning("suggestion_duplicate_key_skipped", key=key)
                result.duplicates += 1
                continue
            seen.add(key)

            match = by_key.get(key)
            if match is not None:
                try:
                    merged = strategy.merge_data(match.data, item)
                    if not isinstance(merged, dict):
                        raise TypeError(f"merge_data returned {type(merged).__name__}, expected dict")
                except Exception as e:
                    # Keep the persisted data as-is.
                    log.warning("suggestion_merge_failed", key=key, suggestion_id=match.id, error=str(e))
                    result.errors.append(ItemError(item=item, error=str(e), key=key, stage="merge"))
                    result.unchanged.append(match)
                    continue

                reopen = reopen_outdated and match.status == SuggestionStatus.OUTDATED
                if merged == match.data and not reopen:
                    result.unchanged.append(match)
                    continue

                match.data = merged
                match.updated_by = actor
                if reopen:
                    new_status = reopen_status(requires_validation=requires_validation)
                    log.warning(
                        "suggestion_regression_detected",
                        key=key,
                        suggestion_id=match.id,
                        from_status=SuggestionStatus.parse(match.status).value,
                        to_status=new_status.value,
                    )
                    match.status = new_status
                    result.reopened.append(match)
                to_save.append(match)
                continue

            try:
                payload = strategy.map_new_suggestion(item, opportunity.id)
                if not isinstance(payload, dict):
                    raise TypeError(f"map_new_suggestion returned {type(payload).__name__}, expected dict")
                payload = dict(payload)
                payload["rank"] = validate_rank(payload.get("rank"), allow_unranked=strategy.allow_unranked)
                _check_payload(payload)
            except Exception as e:
                log.warning("suggestion_map_failed", key=key, error=str(e))
                result.errors.append(ItemError(item=item, error=str(e), key=key, stage="map"))
                continue

            payload["opportunity_id"] = opportunity.id
            payload.setdefault("type", strategy.suggestion_type)
            if requires_validation:
                payload["status"] = initial_status(requires_validation=True)
            else:
                payload.setdefault("status", initial_status())
            payload["updated_by"] = actor
            to_create.append(payload)

        stale: list[Suggestion] = []
        for sug in existing:
            key = key_by_id.get(sug.id)
            if key is None or key in seen:
                continue
            if is_exempt_from_staleness(sug.status) or sug.status == target_status:
                continue
            if scraped is not None and str((sug.data or {}).get("url") or "") not in scraped:
                continue
            try:
                allowed = bool(strategy.should_update_suggestion(sug))
            except Exception as e:
                log.warning("suggestion_veto_check_failed", suggestion_id=sug.id, error=str(e))
                allowed = False
            if allowed:
                stale.append(sug)
            else:
                result.vetoed.append(sug)

        for sug in to_save:
            try:
                await store.save_suggestion(sug)
            except Exception as e:
                raise SuggestionUpdateError(
                    message=f"Failed to update suggestion {sug.id} for siteId {site_id}: {e}",
                    site_id=site_id,
                    audit_id=audit_id,
                    operation="save_suggestion",
                    cause=e,
                ) from e
            result.updated.append(sug)

        if stale:
            try:
                result.outdated = list(await store.bulk_update_status(stale, target_status, updated_by=actor))
            except Exception as e:
                raise SuggestionUpdateError(
                    message=f"Failed to mark {len(stale)} suggestions {target_status.value} for siteId {site_id}: {e}",
                    site_id=site_id,
                    audit_id=audit_id,
                    operation="bulk_update_status",
                    cause=e,
                ) from e

        if to_create:
            try:
                created = await store.create_suggestions(to_create)
            except Exception as e:
                raise SuggestionCreateError(
                    message=f"Failed to create suggestions for siteId {site_id}: {e}",
                    site_id=site_id,
                    audit_id=audit_id,
                    operation="create_suggestions",
                    cause=e,
                ) from e
            result.created = list(created.created_items)

            if created.error_items:
                failed = created.error_items
                log.error(
                    "suggestions_create_failed",
                    opportunity_id=opportunity.id,
                    created=len(created.created_items),
                    failed=len(failed),
                    first_errors=safe_sample(
                        [e.to_dict() for e in failed[: s.sync_max_error_details]],
                        max_items=s.sync_max_error_details,
                    ),
                )
                raise SuggestionCreateError(
                    message=(
                        f"Failed to create {len(failed)} of {len(to_create)} suggestions "
                        f"for siteId {site_id}: {failed[0].error}"
                    ),
                    site_id=site_id,
                    audit_id=audit_id,
                    operation="create_suggestions",
                    created_count=len(created.created_items),
                    failed_count=len(failed),
                )

        log.info(
            "suggestions_synced",
            opportunity_id=opportunity.id,
            findings=len(findings),
            existing=len(existing),
            status_to_set_for_outdated=target_status.value,
            **result.counts(),
        )
        if result.outdated:
            log.debug(
                "suggestions_marked_stale",
                opportunity_id=opportunity.id,
                suggestion_ids=safe_sample([x.id for x in result.outdated], max_items=s.sync_log_sample_size),
            )
        if result.errors:
            log.warning(
                "suggestion_items_skipped",
                opportunity_id=opportunity.id,
                errors=safe_sample([e.to_dict() for e in result.errors], max_items=s.sync_log_sample_size),
            )
        return result
