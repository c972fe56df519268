from __future__ import annotations

from functools import partial
from typing import Any

import anyio
import pytest

from audit_sync.domain import AuditContext, SuggestionStatus
from audit_sync.modules.suggestions.strategies import FunctionStrategy, shallow_merge_data
from audit_sync.modules.suggestions.sync_service import sync_suggestions

AUDIT_TYPE = "meta-tags"


def _map(data: dict[str, Any], opportunity_id: str) -> dict[str, Any]:
    return {
        "opportunity_id": opportunity_id,
        "type": "CONTENT_UPDATE",
        "rank": data.get("rank", 0),
        "data": dict(data),
    }


def _strategy(**kw) -> FunctionStrategy:
    kw.setdefault("merge_fn", shallow_merge_data)
    return FunctionStrategy(audit_type=AUDIT_TYPE, map_fn=_map, **kw)


def _opportunity(store):
    return anyio.run(
        store.create_opportunity,
        {"site_id": "site-1", "audit_id": "audit-1", "type": AUDIT_TYPE},
    )


def _seed(store, opp, rows: list[tuple[str, str]]):
    """Persist suggestions directly: (url, status)."""
    payloads = [
        {
            "opportunity_id": opp.id,
            "type": "CONTENT_UPDATE",
            "rank": 0,
            "status": status,
            "data": {"url": url},
        }
        for url, status in rows
    ]
    res = anyio.run(store.create_suggestions, payloads)
    assert not res.error_items
    return res.created_items


def _sync(store, opp, findings, strategy=None, **kw):
    return anyio.run(
        partial(
            sync_suggestions,
            opportunity=opp,
            new_data=findings,
            store=store,
            strategy=strategy or _strategy(),
            **kw,
        )
    )


def _by_url(fake_table) -> dict[str, dict[str, Any]]:
    return {it["data"].get("url"): it for it in fake_table.suggestions()}


def test_first_run_creates_one_suggestion_per_finding(store, fake_table):
    opp = _opportunity(store)
    res = _sync(store, opp, [{"url": "/a", "title": "A"}, {"url": "/b", "title": "B"}])

    assert len(res.created) == 2
    rows = _by_url(fake_table)
    assert set(rows) == {"/a", "/b"}
    assert rows["/a"]["status"] == "NEW"
    assert rows["/a"]["updatedBy"] == "system"


def test_second_run_with_same_findings_writes_nothing(store, fake_table):
    opp = _opportunity(store)
    findings = [{"url": "/a", "title": "A"}, {"url": "/b", "title": "B"}]
    _sync(store, opp, findings)

    puts, batches = fake_table.put_calls, fake_table.batch_calls
    res = _sync(store, opp, findings)

    assert res.created == [] and res.updated == [] and res.outdated == []
    assert len(res.unchanged) == 2
    assert (fake_table.put_calls, fake_table.batch_calls) == (puts, batches)
    assert len(fake_table.suggestions()) == 2


def test_disappeared_key_is_outdated_and_new_key_created(store, fake_table):
    opp = _opportunity(store)
    _sync(store, opp, [{"url": "/a", "title": "A"}, {"url": "/b", "title": "B"}])

    res = _sync(store, opp, [{"url": "/a", "title": "A2"}, {"url": "/c", "title": "C"}])

    assert [s.data["url"] for s in res.updated] == ["/a"]
    assert [s.data["url"] for s in res.outdated] == ["/b"]
    assert [s.data["url"] for s in res.created] == ["/c"]

    rows = _by_url(fake_table)
    assert rows["/a"]["data"]["title"] == "A2"
    assert rows["/a"]["status"] == "NEW"
    assert rows["/b"]["status"] == "OUTDATED"
    assert rows["/c"]["status"] == "NEW"


def test_existing_suggestions_updated_and_outdated_without_growing(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/p1", "NEW"), ("/p2", "NEW")])

    _sync(store, opp, [{"url": "/p1", "title": "fresh"}])

    rows = _by_url(fake_table)
    assert len(rows) == 2
    assert rows["/p1"]["data"]["title"] == "fresh"
    assert rows["/p1"]["status"] == "NEW"
    assert rows["/p2"]["status"] == "OUTDATED"


def test_veto_keeps_disappeared_suggestion_active(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/keep", "NEW"), ("/drop", "NEW")])
    strategy = _strategy(should_update_fn=lambda s: s.data.get("url") != "/keep")

    res = _sync(store, opp, [], strategy=strategy)

    assert [s.data["url"] for s in res.vetoed] == ["/keep"]
    rows = _by_url(fake_table)
    assert rows["/keep"]["status"] == "NEW"
    assert rows["/drop"]["status"] == "OUTDATED"


def test_veto_that_raises_counts_as_veto(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", "NEW")])

    def boom(_s):
        raise RuntimeError("nope")

    res = _sync(store, opp, [], strategy=_strategy(should_update_fn=boom))
    assert len(res.vetoed) == 1
    assert _by_url(fake_table)["/x"]["status"] == "NEW"


@pytest.mark.parametrize("status", ["SKIPPED", "FIXED", "ERROR", "OUTDATED"])
def test_exempt_statuses_are_never_rewritten(store, fake_table, status):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", status)])
    batches = fake_table.batch_calls

    res = _sync(store, opp, [])

    assert res.outdated == []
    assert fake_table.batch_calls == batches
    assert _by_url(fake_table)["/x"]["status"] == status


def test_custom_target_status_for_disappeared(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", "IN_PROGRESS")])

    _sync(store, opp, [], status_to_set_for_outdated=SuggestionStatus.FIXED)
    assert _by_url(fake_table)["/x"]["status"] == "FIXED"


def test_scraped_urls_limit_staleness(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/scraped", "NEW"), ("/not-scraped", "NEW")])

    _sync(store, opp, [], scraped_urls=["/scraped"])

    rows = _by_url(fake_table)
    assert rows["/scraped"]["status"] == "OUTDATED"
    assert rows["/not-scraped"]["status"] == "NEW"


def test_outdated_suggestion_stays_outdated_by_default(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", "OUTDATED")])

    res = _sync(store, opp, [{"url": "/x", "title": "back"}])

    assert res.reopened == []
    row = _by_url(fake_table)["/x"]
    assert row["status"] == "OUTDATED"
    assert row["data"]["title"] == "back"


def test_reopen_outdated_moves_back_to_new(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", "OUTDATED")])

    res = _sync(store, opp, [{"url": "/x"}], reopen_outdated=True)

    assert len(res.reopened) == 1
    assert _by_url(fake_table)["/x"]["status"] == "NEW"


def test_reopen_outdated_respects_validation_requirement(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/x", "OUTDATED")])
    ctx = AuditContext(site_id="site-1", audit_id="audit-2", requires_validation=True)

    _sync(store, opp, [{"url": "/x"}], reopen_outdated=True, context=ctx)
    assert _by_url(fake_table)["/x"]["status"] == "PENDING_VALIDATION"


def test_new_suggestions_pending_validation_when_site_requires_it(store, fake_table):
    opp = _opportunity(store)
    ctx = AuditContext(site_id="site-1", audit_id="audit-2", requires_validation=True)

    _sync(store, opp, [{"url": "/a"}], context=ctx)
    assert _by_url(fake_table)["/a"]["status"] == "PENDING_VALIDATION"


def test_duplicate_keys_in_one_batch_create_once(store, fake_table):
    opp = _opportunity(store)
    res = _sync(store, opp, [{"url": "/a", "title": "first"}, {"url": "/a", "title": "second"}])

    assert res.duplicates == 1
    rows = fake_table.suggestions()
    assert len(rows) == 1
    assert rows[0]["data"]["title"] == "first"


def test_adapter_error_skips_only_that_item(store, fake_table):
    opp = _opportunity(store)

    res = _sync(store, opp, [{"url": "/a"}, {"title": "no url"}, {"url": "/b"}])

    assert len(res.created) == 2
    assert len(res.errors) == 1
    assert res.errors[0].stage == "build_key"
    assert set(_by_url(fake_table)) == {"/a", "/b"}


def test_invalid_rank_is_skipped(store, fake_table):
    opp = _opportunity(store)

    res = _sync(store, opp, [{"url": "/a", "rank": -5}, {"url": "/b", "rank": 3}])

    assert [e.stage for e in res.errors] == ["map"]
    rows = _by_url(fake_table)
    assert set(rows) == {"/b"}
    assert rows["/b"]["rank"] == 3


def test_unranked_allowed_only_when_strategy_opts_in(store, fake_table):
    opp = _opportunity(store)

    res = _sync(store, opp, [{"url": "/a", "rank": -1}])
    assert len(res.errors) == 1

    res = _sync(store, opp, [{"url": "/a", "rank": -1}], strategy=_strategy(allow_unranked=True))
    assert len(res.created) == 1
    assert _by_url(fake_table)["/a"]["rank"] == -1


def test_malformed_creation_payload_is_skipped_per_item(store, fake_table):
    opp = _opportunity(store)

    def map_fn(data, opportunity_id):
        payload = _map(data, opportunity_id)
        if data["url"] == "/no-data":
            payload["data"] = None
        elif data["url"] == "/no-type":
            payload["type"] = None
        elif data["url"] == "/bad-status":
            payload["status"] = "DONE"
        return payload

    strategy = FunctionStrategy(audit_type=AUDIT_TYPE, map_fn=map_fn)
    res = _sync(store, opp, [{"url": u} for u in ("/a", "/no-data", "/no-type", "/bad-status", "/b")], strategy=strategy)

    assert [e.stage for e in res.errors] == ["map", "map", "map"]
    assert sorted(e.key for e in res.errors) == ["/bad-status|meta-tags", "/no-data|meta-tags", "/no-type|meta-tags"]
    assert set(_by_url(fake_table)) == {"/a", "/b"}


def test_missing_key_is_an_error_not_a_duplicate(store, fake_table):
    opp = _opportunity(store)
    strategy = _strategy(key_fn=lambda d: d.get("id"))

    res = _sync(store, opp, [{"url": "/a", "id": "k-a"}, {"url": "/b"}, {"url": "/c"}], strategy=strategy)

    assert res.duplicates == 0
    assert [e.stage for e in res.errors] == ["build_key", "build_key"]
    assert set(_by_url(fake_table)) == {"/a"}


def test_existing_suggestion_without_key_is_left_alone(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/a", "NEW"), ("/b", "NEW")])
    strategy = _strategy(key_fn=lambda d: d["url"] if d["url"] == "/a" else None)

    res = _sync(store, opp, [], strategy=strategy)

    assert [s.data["url"] for s in res.outdated] == ["/a"]
    assert _by_url(fake_table)["/b"]["status"] == "NEW"


def test_merge_error_keeps_existing_data(store, fake_table):
    opp = _opportunity(store)
    _seed(store, opp, [("/a", "NEW")])

    def bad_merge(_existing, _new):
        raise KeyError("x")

    res = _sync(store, opp, [{"url": "/a", "title": "T"}], strategy=_strategy(merge_fn=bad_merge))

    assert res.updated == [] and res.outdated == []
    assert res.errors[0].stage == "merge"
    assert "title" not in _by_url(fake_table)["/a"]["data"]


def test_partial_create_failure_raises_after_persisting_good_batches(fake_table):
    from audit_sync.errors import SuggestionCreateError
    from audit_sync.repositories.audit_store_repo import DynamoAuditStore

    store = DynamoAuditStore(batch_size=1)
    opp = _opportunity(store)
    fake_table.fail_batch_calls = {2}

    with pytest.raises(SuggestionCreateError) as ei:
        _sync(store, opp, [{"url": "/a"}, {"url": "/b"}, {"url": "/c"}])

    err = ei.value
    assert err.created_count == 2
    assert err.failed_count == 1
    assert "site-1" in str(err)
    assert set(_by_url(fake_table)) == {"/a", "/c"}


def test_fetch_failure_is_wrapped_with_site_id(store, fake_table):
    from audit_sync.errors import SuggestionFetchError

    opp = _opportunity(store)
    fake_table.fail_queries = True

    with pytest.raises(SuggestionFetchError) as ei:
        _sync(store, opp, [{"url": "/a"}])
    assert "siteId site-1" in str(ei.value)
    assert ei.value.operation == "list_suggestions"


def test_update_failure_aborts_before_creations(store, fake_table):
    from audit_sync.errors import SuggestionUpdateError

    opp = _opportunity(store)
    _seed(store, opp, [("/a", "NEW")])
    fake_table.fail_puts = True

    with pytest.raises(SuggestionUpdateError):
        _sync(store, opp, [{"url": "/a", "title": "changed"}, {"url": "/new"}])
    assert "/new" not in _by_url(fake_table)
