from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Iterable, TypeVar

import anyio

from ..db.dynamodb.errors import DdbError
from ..db.dynamodb.table import DynamoTable, get_main_table
from ..domain import (
    BulkCreateResult,
    FixEntity,
    FixEntityStatus,
    ItemError,
    Opportunity,
    OpportunityStatus,
    Suggestion,
    SuggestionStatus,
)
from ..observability.logging import get_logger
from ..settings import get_settings
from .base_repository import AuditStore

log = get_logger("audit_store_repo")

T = TypeVar("T")

GSI1 = "GSI1"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _new_id() -> str:
    return str(uuid.uuid4())


def _required(value: Any, name: str) -> str:
    v = str(value or "").strip()
    if not v:
        raise ValueError(f"{name} is required")
    return v


def opportunity_key(opportunity_id: str) -> dict[str, str]:
    oid = _required(opportunity_id, "opportunity_id")
    return {"pk": f"OPPORTUNITY#{oid}", "sk": "PROFILE"}


def opportunity_status_gsi1pk(site_id: str, status: str | OpportunityStatus) -> str:
    return f"SITE#{_required(site_id, 'site_id')}#OPPSTATUS#{OpportunityStatus.parse(status).value}"


def suggestion_key(opportunity_id: str, suggestion_id: str) -> dict[str, str]:
    oid = _required(opportunity_id, "opportunity_id")
    sid = _required(suggestion_id, "suggestion_id")
    return {"pk": f"OPPORTUNITY#{oid}", "sk": f"SUGGESTION#{sid}"}


def fix_entity_key(opportunity_id: str, fix_entity_id: str) -> dict[str, str]:
    oid = _required(opportunity_id, "opportunity_id")
    fid = _required(fix_entity_id, "fix_entity_id")
    return {"pk": f"OPPORTUNITY#{oid}", "sk": f"FIXENTITY#{fid}"}


def _clean(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if v is not None}


# --- item <-> entity ---


def opportunity_to_item(opp: Opportunity) -> dict[str, Any]:
    status = OpportunityStatus.parse(opp.status).value
    created_at = opp.created_at or _now_iso()
    return _clean(
        {
            **opportunity_key(opp.id),
            "entityType": "Opportunity",
            "gsi1pk": opportunity_status_gsi1pk(opp.site_id, status),
            # Newest last in the index; ties broken by id.
            "gsi1sk": f"{created_at}#{opp.id}",
            "opportunityId": opp.id,
            "siteId": opp.site_id,
            "auditId": opp.audit_id,
            "type": opp.type,
            "status": status,
            "data": dict(opp.data or {}),
            "guidance": dict(opp.guidance or {}),
            "title": opp.title,
            "description": opp.description,
            "tags": list(opp.tags or []),
            "origin": opp.origin,
            "runbook": opp.runbook,
            "updatedBy": opp.updated_by,
            "createdAt": created_at,
            "updatedAt": opp.updated_at or created_at,
        }
    )


def normalize_opportunity(item: dict[str, Any] | None) -> Opportunity | None:
    if not item:
        return None
    return Opportunity(
        id=str(item.get("opportunityId") or ""),
        site_id=str(item.get("siteId") or ""),
        type=str(item.get("type") or ""),
        status=OpportunityStatus.parse(item.get("status")),
        audit_id=item.get("auditId"),
        data=dict(item.get("data") or {}),
        guidance=dict(item.get("guidance") or {}),
        title=item.get("title"),
        description=item.get("description"),
        tags=list(item.get("tags") or []),
        origin=item.get("origin"),
        runbook=item.get("runbook"),
        updated_by=item.get("updatedBy"),
        created_at=item.get("createdAt"),
        updated_at=item.get("updatedAt"),
    )


def suggestion_to_item(s: Suggestion) -> dict[str, Any]:
    created_at = s.created_at or _now_iso()
    return _clean(
        {
            **suggestion_key(s.opportunity_id, s.id),
            "entityType": "Suggestion",
            "suggestionId": s.id,
            "opportunityId": s.opportunity_id,
            "type": s.type,
            "rank": int(s.rank),
            "status": SuggestionStatus.parse(s.status).value,
            "data": dict(s.data or {}),
            "kpiDeltas": dict(s.kpi_deltas) if s.kpi_deltas else None,
            "updatedBy": s.updated_by,
            "createdAt": created_at,
            "updatedAt": s.updated_at or created_at,
        }
    )


def normalize_suggestion(item: dict[str, Any] | None) -> Suggestion | None:
    if not item:
        return None
    return Suggestion(
        id=str(item.get("suggestionId") or ""),
        opportunity_id=str(item.get("opportunityId") or ""),
        type=str(item.get("type") or ""),
        rank=int(item.get("rank") or 0),
        status=SuggestionStatus.parse(item.get("status") or "NEW"),
        data=dict(item.get("data") or {}),
        kpi_deltas=dict(item["kpiDeltas"]) if item.get("kpiDeltas") else None,
        updated_by=item.get("updatedBy"),
        created_at=item.get("createdAt"),
        updated_at=item.get("updatedAt"),
    )


def fix_entity_to_item(fe: FixEntity) -> dict[str, Any]:
    created_at = fe.created_at or _now_iso()
    return _clean(
        {
            **fix_entity_key(fe.opportunity_id, fe.id),
            "entityType": "FixEntity",
            "fixEntityId": fe.id,
            "opportunityId": fe.opportunity_id,
            "type": fe.type,
            "status": FixEntityStatus.parse(fe.status).value,
            "changeDetails": dict(fe.change_details or {}),
            "suggestionIds": list(fe.suggestion_ids or []),
            "executedAt": fe.executed_at,
            "updatedBy": fe.updated_by,
            "createdAt": created_at,
            "updatedAt": fe.updated_at or created_at,
        }
    )


def normalize_fix_entity(item: dict[str, Any] | None) -> FixEntity | None:
    if not item:
        return None
    return FixEntity(
        id=str(item.get("fixEntityId") or ""),
        opportunity_id=str(item.get("opportunityId") or ""),
        type=item.get("type"),
        status=FixEntityStatus.parse(item.get("status")),
        change_details=dict(item.get("changeDetails") or {}),
        suggestion_ids=[str(x) for x in (item.get("suggestionIds") or [])],
        executed_at=item.get("executedAt"),
        updated_by=item.get("updatedBy"),
        created_at=item.get("createdAt"),
        updated_at=item.get("updatedAt"),
    )


def _suggestion_from_payload(payload: dict[str, Any], now: str) -> Suggestion:
    if not isinstance(payload, dict):
        raise ValueError("suggestion payload must be a dict")
    rank = payload.get("rank")
    if isinstance(rank, bool) or not isinstance(rank, int):
        raise ValueError(f"rank must be an integer, got {rank!r}")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise ValueError("data must be a dict")
    return Suggestion(
        id=str(payload.get("id") or _new_id()),
        opportunity_id=_required(payload.get("opportunity_id"), "opportunity_id"),
        type=_required(payload.get("type"), "type"),
        rank=rank,
        status=SuggestionStatus.parse(payload.get("status") or SuggestionStatus.NEW),
        data=dict(data),
        kpi_deltas=payload.get("kpi_deltas") or None,
        updated_by=payload.get("updated_by"),
        created_at=now,
        updated_at=now,
    )


def _chunks(rows: list[T], size: int) -> Iterable[list[T]]:
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


class DynamoAuditStore(AuditStore):
    """
    `AuditStore` over the single DynamoDB table.

    Layout (pk / sk):
    - OPPORTUNITY#<id> / PROFILE            (GSI1: SITE#<site>#OPPSTATUS#<status>)
    - OPPORTUNITY#<id> / SUGGESTION#<id>
    - OPPORTUNITY#<id> / FIXENTITY#<id>

    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(self, table: DynamoTable | None = None, *, batch_size: int | None = None):
        self._table = table
        self._batch_size = int(batch_size or get_settings().effective_batch_size)

    def _tbl(self) -> DynamoTable:
        return self._table if self._table is not None else get_main_table()

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(partial(fn, *args))

    # --- opportunities ---

    def _list_opportunities(self, site_id: str, status: str) -> list[Opportunity]:
        items = self._tbl().query_all(
            pk_name="gsi1pk",
            pk_value=opportunity_status_gsi1pk(site_id, status),
            index_name=GSI1,
        )
        out = [normalize_opportunity(it) for it in items]
        return [o for o in out if o is not None]

    async def list_opportunities_by_site_and_status(self, site_id: str, status: str) -> list[Opportunity]:
        return await self._run(self._list_opportunities, site_id, status)

    def _create_opportunity(self, payload: dict[str, Any]) -> Opportunity:
        now = _now_iso()
        opp = Opportunity(
            id=str(payload.get("id") or _new_id()),
            site_id=_required(payload.get("site_id"), "site_id"),
            type=_required(payload.get("type"), "type"),
            status=OpportunityStatus.parse(payload.get("status")),
            audit_id=payload.get("audit_id"),
            data=dict(payload.get("data") or {}),
            guidance=dict(payload.get("guidance") or {}),
            title=payload.get("title"),
            description=payload.get("description"),
            tags=list(payload.get("tags") or []),
            origin=payload.get("origin"),
            runbook=payload.get("runbook"),
            updated_by=payload.get("updated_by"),
            created_at=now,
            updated_at=now,
        )
        self._tbl().put_item(
            item=opportunity_to_item(opp),
            condition_expression="attribute_not_exists(pk) AND attribute_not_exists(sk)",
        )
        return opp

    async def create_opportunity(self, payload: dict[str, Any]) -> Opportunity:
        return await self._run(self._create_opportunity, payload)

    def _save_opportunity(self, opportunity: Opportunity) -> Opportunity:
        opportunity.updated_at = _now_iso()
        self._tbl().put_item(item=opportunity_to_item(opportunity))
        return opportunity

    async def save_opportunity(self, opportunity: Opportunity) -> Opportunity:
        return await self._run(self._save_opportunity, opportunity)

    # --- suggestions ---

    def _list_suggestions(self, opportunity_id: str) -> list[Suggestion]:
        items = self._tbl().query_all(
            pk_name="pk",
            pk_value=opportunity_key(opportunity_id)["pk"],
            sk_name="sk",
            sk_prefix="SUGGESTION#",
        )
        out = [normalize_suggestion(it) for it in items]
        return [s for s in out if s is not None]

    async def list_suggestions(self, opportunity_id: str) -> list[Suggestion]:
        return await self._run(self._list_suggestions, opportunity_id)

    def _create_suggestions(self, payloads: list[dict[str, Any]]) -> BulkCreateResult:
        result = BulkCreateResult()
        now = _now_iso()

        valid: list[tuple[dict[str, Any], Suggestion]] = []
        for payload in payloads:
            try:
                valid.append((payload, _suggestion_from_payload(payload, now)))
            except ValueError as e:
                result.error_items.append(ItemError(item=payload, error=str(e), stage="validate"))

        table = self._tbl()
        for chunk in _chunks(valid, self._batch_size):
            try:
                table.batch_put(items=[suggestion_to_item(s) for _, s in chunk])
            except DdbError as e:
                # Earlier chunks stay written; report this one per item.
                log.warning(
                    "suggestion_batch_write_failed",
                    batch_size=len(chunk),
                    **e.log_fields(),
                )
                result.error_items.extend(
                    ItemError(item=payload, error=str(e), stage="write") for payload, _ in chunk
                )
                continue
            result.created_items.extend(s for _, s in chunk)
        return result

    async def create_suggestions(self, payloads: list[dict[str, Any]]) -> BulkCreateResult:
        return await self._run(self._create_suggestions, list(payloads))

    def _save_suggestion(self, suggestion: Suggestion) -> Suggestion:
        suggestion.updated_at = _now_iso()
        self._tbl().put_item(item=suggestion_to_item(suggestion))
        return suggestion

    async def save_suggestion(self, suggestion: Suggestion) -> Suggestion:
        return await self._run(self._save_suggestion, suggestion)

    def _bulk_update_status(
        self,
        suggestions: list[Suggestion],
        status: SuggestionStatus,
        updated_by: str | None,
    ) -> list[Suggestion]:
        now = _now_iso()
        table = self._tbl()
        for chunk in _chunks(suggestions, self._batch_size):
            rows = [
                replace(s, status=status, updated_at=now, updated_by=updated_by or s.updated_by) for s in chunk
            ]
            table.batch_put(items=[suggestion_to_item(r) for r in rows])
            # In-memory suggestions change only once their chunk is written.
            for s, r in zip(chunk, rows):
                s.status, s.updated_at, s.updated_by = r.status, r.updated_at, r.updated_by
        return suggestions

    async def bulk_update_status(
        self,
        suggestions: Iterable[Suggestion],
        status: SuggestionStatus,
        *,
        updated_by: str | None = None,
    ) -> list[Suggestion]:
        rows = list(suggestions)
        if not rows:
            return []
        return await self._run(self._bulk_update_status, rows, SuggestionStatus.parse(status), updated_by)

    # --- fix entities ---

    def _add_fix_entities(self, payloads: list[dict[str, Any]]) -> list[FixEntity]:
        now = _now_iso()
        out: list[FixEntity] = []
        for p in payloads:
            out.append(
                FixEntity(
                    id=str(p.get("id") or _new_id()),
                    opportunity_id=_required(p.get("opportunity_id"), "opportunity_id"),
                    type=p.get("type"),
                    status=FixEntityStatus.parse(p.get("status")),
                    change_details=dict(p.get("change_details") or {}),
                    suggestion_ids=[str(x) for x in (p.get("suggestion_ids") or [])],
                    executed_at=p.get("executed_at"),
                    updated_by=p.get("updated_by"),
                    created_at=now,
                    updated_at=now,
                )
            )
        table = self._tbl()
        for chunk in _chunks(out, self._batch_size):
            table.batch_put(items=[fix_entity_to_item(fe) for fe in chunk])
        return out

    async def add_fix_entities(self, payloads: list[dict[str, Any]]) -> list[FixEntity]:
        if not payloads:
            return []
        return await self._run(self._add_fix_entities, list(payloads))

    def _list_fix_entities(self, opportunity_id: str, status: FixEntityStatus) -> list[FixEntity]:
        items = self._tbl().query_all(
            pk_name="pk",
            pk_value=opportunity_key(opportunity_id)["pk"],
            sk_name="sk",
            sk_prefix="FIXENTITY#",
        )
        out = [normalize_fix_entity(it) for it in items]
        return [fe for fe in out if fe is not None and fe.status == status]

    async def list_fix_entities_by_status(self, opportunity_id: str, status: FixEntityStatus) -> list[FixEntity]:
        return await self._run(self._list_fix_entities, opportunity_id, FixEntityStatus.parse(status))

    def _suggestions_for_fix_entity(self, fix_entity: FixEntity) -> list[Suggestion]:
        if not fix_entity.suggestion_ids:
            return []
        table = self._tbl()
        out: list[Suggestion] = []
        for sid in fix_entity.suggestion_ids:
            s = normalize_suggestion(table.get_item(key=suggestion_key(fix_entity.opportunity_id, sid)))
            if s is not None:
                out.append(s)
        return out

    async def list_suggestions_for_fix_entity(self, fix_entity: FixEntity) -> list[Suggestion]:
        return await self._run(self._suggestions_for_fix_entity, fix_entity)

    def _save_fix_entity(self, fix_entity: FixEntity) -> FixEntity:
        fix_entity.updated_at = _now_iso()
        self._tbl().put_item(item=fix_entity_to_item(fix_entity))
        return fix_entity

    async def save_fix_entity(self, fix_entity: FixEntity) -> FixEntity:
        return await self._run(self._save_fix_entity, fix_entity)
