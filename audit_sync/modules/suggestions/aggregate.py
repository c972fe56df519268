from __future__ import annotations

from typing import Any, Iterable

from ...domain import Suggestion

DOMAIN_WIDE_KEY_PREFIX = "domain-wide-aggregate"


def domain_wide_key(audit_type: str) -> str:
    t = str(audit_type or "").strip()
    if not t:
        raise ValueError("audit_type is required")
    return f"{DOMAIN_WIDE_KEY_PREFIX}|{t}"


def is_domain_wide(data: dict[str, Any] | None) -> bool:
    if not isinstance(data, dict):
        return False
    if data.get("isDomainWide") is True:
        return True
    return str(data.get("key") or "").startswith(f"{DOMAIN_WIDE_KEY_PREFIX}|")


def _number(v: Any) -> float | int:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return 0
    return v


def build_domain_wide_finding(
    audit_type: str,
    findings: Iterable[dict[str, Any]],
    sum_fields: Iterable[str],
    **extra: Any,
) -> dict[str, Any]:
    """
    Build the single aggregate finding that stands for a whole domain.

    Metrics in `sum_fields` are summed as raw numbers across the per-page
    findings (existing aggregates are ignored so they are never counted twice).
    `pageCount` is the number of pages folded in. Extra keyword arguments are
    copied onto the finding as-is.
    """
    fields = list(sum_fields)
    totals: dict[str, float | int] = {f: 0 for f in fields}
    pages = 0
    for f in findings:
        if not isinstance(f, dict) or is_domain_wide(f):
            continue
        pages += 1
        for name in fields:
            totals[name] += _number(f.get(name))

    return {
        **extra,
        **totals,
        "key": domain_wide_key(audit_type),
        "isDomainWide": True,
        "pageCount": pages,
    }


def protect_domain_wide(suggestion: Suggestion) -> bool:
    """Staleness veto: the aggregate suggestion is never marked outdated."""
    return not is_domain_wide(suggestion.data)


def render_lower_bound(value: float | int | None) -> str:
    """Display helper for aggregate metrics, e.g. 12.7 -> "12+"."""
    n = int(_number(value))
    return f"{max(n, 0)}+"
