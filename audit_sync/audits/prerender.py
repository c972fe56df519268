from __future__ import annotations

import re
from typing import Any, Iterable
from urllib.parse import urlparse

from ..domain import Suggestion, SuggestionType
from ..modules.suggestions.aggregate import build_domain_wide_finding, is_domain_wide, protect_domain_wide
from ..modules.suggestions.strategies import SHOW_FIRST_RANK, SuggestionStrategy, overlay_machine_fields

AUDIT_TYPE = "prerender"

# Fields the prerender audit computes; anything else on a suggestion belongs to someone else.
MACHINE_FIELDS = (
    "url",
    "contentGainRatio",
    "wordCountBefore",
    "wordCountAfter",
    "originalHtmlKey",
    "prerenderedHtmlKey",
)
AGGREGATE_SUM_FIELDS = ("agenticTraffic", "wordCountBefore", "wordCountAfter")
AGGREGATE_FIELDS = (*AGGREGATE_SUM_FIELDS, "pageCount")
# Selection flag used to pick findings; never persisted.
TRANSIENT_FIELDS = ("needsPrerender",)


def sanitize_import_path(path: str) -> str:
    p = re.sub(r"^/+|/+$", "", path or "")
    p = re.sub(r"[/._]", "-", p)
    p = re.sub(r"-+", "-", p)
    return re.sub(r"^-|-$", "", p)


def s3_html_key(url: str, scrape_job_id: str, file_name: str) -> str:
    """Object key of one scraped artifact, e.g. prerender/scrapes/<job>/products-shoes/server-side.html."""
    path = sanitize_import_path(urlparse(url).path)
    segment = f"/{path}" if path else ""
    return f"{AUDIT_TYPE}/scrapes/{scrape_job_id}{segment}/{file_name}"


def _page_finding(result: dict[str, Any], scrape_job_id: str) -> dict[str, Any]:
    url = str(result.get("url") or "")
    out: dict[str, Any] = {
        "url": url,
        "contentGainRatio": result.get("contentGainRatio") or 0,
        "wordCountBefore": result.get("wordCountBefore") or 0,
        "wordCountAfter": result.get("wordCountAfter") or 0,
        "originalHtmlKey": s3_html_key(url, scrape_job_id, "server-side.html"),
        "prerenderedHtmlKey": s3_html_key(url, scrape_job_id, "client-side.html"),
        "needsPrerender": True,
    }
    if "agenticTraffic" in result:
        out["agenticTraffic"] = result.get("agenticTraffic") or 0
    return out


def prepare_prerender_findings(
    results: Iterable[dict[str, Any]],
    *,
    scrape_job_id: str,
    include_domain_wide: bool = True,
) -> list[dict[str, Any]]:
    """
    Turn page comparison results into findings for the reconciler.

    Only pages that need prerendering become findings. The domain-wide
    aggregate is appended on every run, with zero totals when no page
    qualifies.
    """
    pages = [
        _page_finding(r, scrape_job_id)
        for r in (results or [])
        if isinstance(r, dict) and r.get("needsPrerender") and r.get("url")
    ]
    if include_domain_wide:
        pages.append(
            build_domain_wide_finding(
                AUDIT_TYPE,
                pages,
                AGGREGATE_SUM_FIELDS,
                scrapeJobId=scrape_job_id,
            )
        )
    return pages


class PrerenderStrategy(SuggestionStrategy):
    audit_type = AUDIT_TYPE
    suggestion_type = SuggestionType.CONFIG_UPDATE.value

    def map_new_suggestion(self, data: dict[str, Any], opportunity_id: str) -> dict[str, Any]:
        clean = {k: v for k, v in data.items() if k not in TRANSIENT_FIELDS}
        return {
            "opportunity_id": opportunity_id,
            "type": self.suggestion_type,
            "rank": SHOW_FIRST_RANK if is_domain_wide(data) else 0,
            "data": clean,
        }

    def merge_data(self, existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
        fields = (*AGGREGATE_FIELDS, "scrapeJobId") if is_domain_wide(new_data) else MACHINE_FIELDS
        return overlay_machine_fields(
            existing_data,
            new_data,
            machine_fields=fields,
            transient_fields=TRANSIENT_FIELDS,
        )

    def should_update_suggestion(self, suggestion: Suggestion) -> bool:
        return protect_domain_wide(suggestion)
