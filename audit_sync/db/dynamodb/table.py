from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from boto3.dynamodb.conditions import Key

from .client import table_resource
from .errors import DdbInternal
from .retry import ddb_call


def to_ddb_value(value: Any) -> Any:
    # The boto3 resource layer rejects floats; store them as Decimal.
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_ddb_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_ddb_value(v) for v in value]
    return value


def from_ddb_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_ddb_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_ddb_value(v) for v in value]
    return value


class DynamoTable:
    def __init__(self, *, table_name: str):
        self.table_name = str(table_name)
        self._table = table_resource(self.table_name)

    # --- basic operations ---

    def get_item(self, *, key: dict[str, Any]) -> dict[str, Any] | None:
        def _op():
            resp = self._table.get_item(Key=key)
            item = resp.get("Item")
            return from_ddb_value(item) if item else None

        return ddb_call("GetItem", _op, table_name=self.table_name, key=key)

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        def _op():
            kwargs: dict[str, Any] = {"Item": to_ddb_value(item)}
            if condition_expression:
                kwargs["ConditionExpression"] = condition_expression
            return self._table.put_item(**kwargs)

        return ddb_call(
            "PutItem",
            _op,
            table_name=self.table_name,
            key={"pk": item.get("pk"), "sk": item.get("sk")},
        )

    def batch_put(self, *, items: Iterable[dict[str, Any]]) -> int:
        """
        Write items with BatchWriteItem; the boto3 batch writer resends unprocessed items.

        Returns the number of items written.
        """
        rows = list(items)
        if not rows:
            return 0

        def _op():
            with self._table.batch_writer() as writer:
                for row in rows:
                    writer.put_item(Item=to_ddb_value(row))
            return len(rows)

        return ddb_call("BatchWriteItem", _op, table_name=self.table_name)

    # --- query ---

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
        """Query one partition and follow LastEvaluatedKey until exhausted."""
        condition = Key(pk_name).eq(pk_value)
        if sk_name and sk_prefix:
            condition = condition & Key(sk_name).begins_with(sk_prefix)

        items: list[dict[str, Any]] = []
        lek: dict[str, Any] | None = None
        while True:

            def _op(start_key=lek):
                kwargs: dict[str, Any] = {
                    "KeyConditionExpression": condition,
                    "ScanIndexForward": bool(scan_index_forward),
                }
                if index_name:
                    kwargs["IndexName"] = index_name
                # Only pass ExclusiveStartKey when present.
                if start_key:
                    kwargs["ExclusiveStartKey"] = start_key
                return self._table.query(**kwargs)

            resp = ddb_call("Query", _op, table_name=self.table_name)
            items.extend(from_ddb_value(it) for it in (resp.get("Items") or []))
            lek = resp.get("LastEvaluatedKey")
            if not lek:
                return items


def get_main_table() -> DynamoTable:
    from ...settings import get_settings

    table_name = get_settings().table_name
    if not table_name:
        raise DdbInternal(message="AUDIT_SYNC_TABLE_NAME is not set", operation="Config")
    return DynamoTable(table_name=table_name)
