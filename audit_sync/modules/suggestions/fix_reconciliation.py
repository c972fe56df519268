"""
Fix-entity bookkeeping for suggestions that went away because someone fixed them.

Both entry points are best-effort: they run after the main sync, and a failure
here must not fail the audit. Errors are logged and the work done so far is
returned.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable

from ...domain import AuditContext, FixEntity, FixEntityStatus, Opportunity, Suggestion, SuggestionStatus
from ...observability.context import bind_audit_context
from ...observability.logging import get_logger
from ...repositories.base_repository import AuditStore
from ...settings import get_settings
from .strategies import SuggestionStrategy

log = get_logger("fix_reconciliation")

IssueCheck = Callable[[Suggestion], Awaitable[bool]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def default_page_path(data: dict[str, Any]) -> str:
    return str((data or {}).get("pagePath") or (data or {}).get("url") or "")


def default_updated_value(data: dict[str, Any]) -> Any:
    d = data or {}
    suggested = d.get("urlsSuggested") or []
    return d.get("urlEdited") or (suggested[0] if suggested else "")


async def reconcile_disappeared_suggestions(
    *,
    opportunity: Opportunity,
    current_findings: Iterable[dict[str, Any]],
    store: AuditStore,
    strategy: SuggestionStrategy,
    is_issue_fixed: IssueCheck,
    context: AuditContext | None = None,
    get_page_path: Callable[[dict[str, Any]], str] = default_page_path,
    get_updated_value: Callable[[dict[str, Any]], Any] = default_updated_value,
    get_old_value: Callable[[dict[str, Any]], Any] | None = None,
) -> list[Suggestion]:
    """
    Mark NEW suggestions that vanished from the findings as FIXED when `is_issue_fixed` confirms it.

    Each confirmed suggestion gets a PUBLISHED fix entity recording what changed.
    Returns the suggestions that were marked FIXED.
    """
    actor = get_settings().sync_actor
    audit_id = context.audit_id if context else opportunity.audit_id
    fixed: list[Suggestion] = []

    with bind_audit_context(site_id=opportunity.site_id, audit_id=audit_id, audit_type=strategy.audit_type):
        try:
            current_keys = {strategy.build_key(f) for f in (current_findings or [])}
            existing = await store.list_suggestions(opportunity.id)

            candidates: list[Suggestion] = []
            for s in existing:
                if s.status != SuggestionStatus.NEW:
                    continue
                try:
                    key = strategy.build_key(s.data)
                except ValueError:
                    continue
                if key not in current_keys:
                    candidates.append(s)

            payloads: list[dict[str, Any]] = []
            for s in candidates:
                if not await is_issue_fixed(s):
                    continue
                log.info("disappeared_suggestion_fixed", suggestion_id=s.id, page_path=get_page_path(s.data))

                s.status = SuggestionStatus.FIXED
                s.updated_by = actor
                try:
                    await store.save_suggestion(s)
                except Exception as e:
                    log.warning("suggestion_mark_fixed_failed", suggestion_id=s.id, error=str(e))
                    continue
                fixed.append(s)

                payloads.append(
                    {
                        "opportunity_id": opportunity.id,
                        "status": FixEntityStatus.PUBLISHED,
                        "type": s.type,
                        "executed_at": _now_iso(),
                        "updated_by": actor,
                        "change_details": {
                            "system": context.delivery_type if context else None,
                            "pagePath": get_page_path(s.data),
                            "oldValue": get_old_value(s.data) if get_old_value else "",
                            "updatedValue": get_updated_value(s.data),
                        },
                        "suggestion_ids": [s.id],
                    }
                )

            if payloads:
                try:
                    await store.add_fix_entities(payloads)
                except Exception as e:
                    log.warning("fix_entities_add_failed", opportunity_id=opportunity.id, error=str(e))
        except Exception as e:
            log.warning("disappeared_suggestions_reconcile_failed", opportunity_id=opportunity.id, error=str(e))

    return fixed


async def publish_deployed_fix_entities(
    *,
    opportunity_id: str,
    store: AuditStore,
    is_issue_resolved_on_production: IssueCheck,
) -> list[FixEntity]:
    """
    Move DEPLOYED fix entities to PUBLISHED once every linked suggestion checks out live.

    A check that raises counts as "not resolved".
    """
    actor = get_settings().sync_actor
    published: list[FixEntity] = []
    try:
        deployed = await store.list_fix_entities_by_status(opportunity_id, FixEntityStatus.DEPLOYED)
        log.info("deployed_fix_entities_loaded", opportunity_id=opportunity_id, count=len(deployed))

        for fe in deployed:
            suggestions = await store.list_suggestions_for_fix_entity(fe)
            if not suggestions:
                continue

            resolved = True
            for s in suggestions:
                try:
                    ok = await is_issue_resolved_on_production(s)
                except Exception as e:
                    log.debug("live_check_failed", fix_entity_id=fe.id, suggestion_id=s.id, error=str(e))
                    ok = False
                if ok is not True:
                    resolved = False
                    break

            if not resolved or fe.status != FixEntityStatus.DEPLOYED:
                continue
            fe.status = FixEntityStatus.PUBLISHED
            fe.updated_by = actor
            await store.save_fix_entity(fe)
            published.append(fe)
            log.debug("fix_entity_published", fix_entity_id=fe.id)
    except Exception as e:
        log.warning("deployed_fix_entities_publish_failed", opportunity_id=opportunity_id, error=str(e))

    return published
