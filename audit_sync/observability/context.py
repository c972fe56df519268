from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

site_id_var: ContextVar[str | None] = ContextVar("audit_sync_site_id", default=None)
audit_id_var: ContextVar[str | None] = ContextVar("audit_sync_audit_id", default=None)
audit_type_var: ContextVar[str | None] = ContextVar("audit_sync_audit_type", default=None)


def get_audit_fields() -> dict[str, str]:
    out: dict[str, str] = {}
    for name, var in (("site_id", site_id_var), ("audit_id", audit_id_var), ("audit_type", audit_type_var)):
        v = var.get()
        if v:
            out[name] = v
    return out


@contextmanager
def bind_audit_context(
    *,
    site_id: str | None = None,
    audit_id: str | None = None,
    audit_type: str | None = None,
) -> Iterator[None]:
    """
    Expose the current audit run to downstream logging for the duration of the block.

    Values that are not given keep whatever an outer block already bound.
    """
    tokens = []
    for var, value in ((site_id_var, site_id), (audit_id_var, audit_id), (audit_type_var, audit_type)):
        if value:
            tokens.append((var, var.set(str(value))))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
