from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

# Ensure the repo root is on sys.path so `import audit_sync.*` works in tests.
ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))


class FakeTable:
    """
    Minimal in-memory stand-in for DynamoTable used by the audit store.

    Supports exactly the calls the store makes: get/put, batch_put and
    partition queries (on the base table or GSI1).
    """

    def __init__(self):
        # Keyed by (pk, sk)
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.put_calls = 0
        self.batch_calls = 0
        # 1-based batch_put call numbers that should fail.
        self.fail_batch_calls: set[int] = set()
        self.fail_puts = False
        self.fail_queries = False

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        it = self.items.get((str(key.get("pk") or ""), str(key.get("sk") or "")))
        return dict(it) if it else None

    def put_item(self, *, item: dict[str, Any], condition_expression: str | None = None, **_kw) -> dict[str, Any]:
        from audit_sync.db.dynamodb.errors import DdbConflict, DdbUnavailable

        self.put_calls += 1
        if self.fail_puts:
            raise DdbUnavailable(message="unavailable", operation="PutItem", table_name="Fake")
        pk = str(item.get("pk") or "")
        sk = str(item.get("sk") or "")
        if condition_expression and "attribute_not_exists(pk)" in condition_expression:
            if (pk, sk) in self.items:
                raise DdbConflict(message="conflict", operation="PutItem", table_name="Fake", key={"pk": pk, "sk": sk})
        self.items[(pk, sk)] = dict(item)
        return {"ok": True}

    def batch_put(self, *, items) -> int:
        from audit_sync.db.dynamodb.errors import DdbThrottled

        self.batch_calls += 1
        rows = list(items)
        if self.batch_calls in self.fail_batch_calls:
            raise DdbThrottled(message="throttled", operation="BatchWriteItem", table_name="Fake", retryable=True)
        for row in rows:
            self.items[(str(row["pk"]), str(row["sk"]))] = dict(row)
        return len(rows)

    def query_all(
        self,
        *,
        pk_name: str,
        pk_value: str,
        index_name: str | None = None,
        sk_name: str | None = None,
        sk_prefix: str | None = None,
        scan_index_forward: bool = True,
    ) -> list[dict[str, Any]]:
        from audit_sync.db.dynamodb.errors import DdbUnavailable

        if self.fail_queries:
            raise DdbUnavailable(message="unavailable", operation="Query", table_name="Fake")
        sort_name = sk_name or ("gsi1sk" if index_name else "sk")
        out = [
            dict(it)
            for it in self.items.values()
            if it.get(pk_name) == pk_value
            and (not sk_prefix or str(it.get(sort_name) or "").startswith(sk_prefix))
        ]
        out.sort(key=lambda it: str(it.get(sort_name) or ""), reverse=not scan_index_forward)
        return out

    def suggestions(self) -> list[dict[str, Any]]:
        return [it for it in self.items.values() if it.get("entityType") == "Suggestion"]


@pytest.fixture()
def fake_table(monkeypatch):
    t = FakeTable()
    import audit_sync.repositories.audit_store_repo as store_repo

    monkeypatch.setattr(store_repo, "get_main_table", lambda: t)
    return t


@pytest.fixture()
def store(fake_table):
    from audit_sync.repositories.audit_store_repo import DynamoAuditStore

    return DynamoAuditStore()
