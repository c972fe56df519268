from __future__ import annotations

from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from ...domain import AuditContext, Opportunity, OpportunityStatus
from ...errors import OpportunityCreateError, OpportunityFetchError, OpportunitySaveError
from ...observability.context import bind_audit_context
from ...observability.logging import get_logger
from ...repositories.base_repository import AuditStore
from ...settings import get_settings

log = get_logger("opportunity_upsert")


class OpportunityDraft(BaseModel):
    """What an audit computes for its opportunity; everything else is fixed metadata."""

    model_config = ConfigDict(extra="ignore")

    data: dict[str, Any] = Field(default_factory=dict)
    guidance: dict[str, Any] | None = None
    tags: list[str] = Field(default_factory=list)
    title: str | None = None
    description: str | None = None
    runbook: str | None = None
    origin: str | None = None


BuildOpportunityData = Callable[[Any], dict[str, Any]]


def _newest(opps: list[Opportunity]) -> Opportunity | None:
    if not opps:
        return None
    return sorted(opps, key=lambda o: (str(o.created_at or ""), o.id), reverse=True)[0]


async def find_active_opportunity(
    *,
    store: AuditStore,
    site_id: str,
    audit_type: str,
    audit_id: str | None = None,
) -> Opportunity | None:
    """Most recently created opportunity of `audit_type` in one of the active statuses."""
    found: list[Opportunity] = []
    for status in get_settings().active_opportunity_status_list:
        try:
            found.extend(await store.list_opportunities_by_site_and_status(site_id, status))
        except Exception as e:
            raise OpportunityFetchError(
                message=f"Failed to fetch opportunities for siteId {site_id}: {e}",
                site_id=site_id,
                audit_id=audit_id,
                operation="list_opportunities_by_site_and_status",
                cause=e,
            ) from e
    return _newest([o for o in found if o.type == audit_type])


async def upsert_opportunity(
    site_url: str | None,
    audit_context: AuditContext,
    store: AuditStore,
    build_opportunity_data: BuildOpportunityData,
    audit_type: str,
    props: Any = None,
    *,
    raise_on_save_error: bool = False,
) -> Opportunity:
    """
    Create the opportunity for (site, audit type), or refresh the active one in place.

    `build_opportunity_data` receives `props` when given, else the audit
    context, and returns the draft fields. On update the new `data` is merged
    over the existing one, so fields the new run does not produce survive.
    A failed save is logged and the in-memory opportunity returned unless
    `raise_on_save_error` is set.
    """
    s = get_settings()
    site_id = audit_context.site_id
    audit_id = audit_context.audit_id

    with bind_audit_context(site_id=site_id, audit_id=audit_id, audit_type=audit_type):
        draft = OpportunityDraft.model_validate(
            build_opportunity_data(props if props is not None else audit_context) or {}
        )

        existing = await find_active_opportunity(
            store=store, site_id=site_id, audit_type=audit_type, audit_id=audit_id
        )

        if existing is not None:
            existing.audit_id = audit_id
            existing.data = {**(existing.data or {}), **draft.data}
            if draft.guidance is not None:
                existing.guidance = draft.guidance
            existing.updated_by = s.sync_actor
            try:
                await store.save_opportunity(existing)
            except Exception as e:
                log.error(
                    "opportunity_save_failed",
                    opportunity_id=existing.id,
                    site_url=site_url,
                    error=str(e),
                )
                if raise_on_save_error:
                    raise OpportunitySaveError(
                        message=f"Failed to save opportunity {existing.id} for siteId {site_id}: {e}",
                        site_id=site_id,
                        audit_id=audit_id,
                        operation="save_opportunity",
                        cause=e,
                    ) from e
                return existing
            log.info("opportunity_updated", opportunity_id=existing.id, site_url=site_url)
            return existing

        payload = {
            "site_id": site_id,
            "audit_id": audit_id,
            "runbook": draft.runbook,
            "type": audit_type,
            "origin": draft.origin or s.opportunity_origin,
            "title": draft.title,
            "description": draft.description,
            "tags": list(draft.tags),
            "data": dict(draft.data),
            "guidance": dict(draft.guidance or {}),
            "status": OpportunityStatus.NEW.value,
            "updated_by": s.sync_actor,
        }
        try:
            created = await store.create_opportunity(payload)
        except Exception as e:
            log.error("opportunity_create_failed", site_url=site_url, error=str(e))
            raise OpportunityCreateError(
                message=f"Failed to create opportunity for siteId {site_id} and auditId {audit_id}: {e}",
                site_id=site_id,
                audit_id=audit_id,
                operation="create_opportunity",
                cause=e,
            ) from e
        log.info("opportunity_created", opportunity_id=created.id, site_url=site_url)
        return created
