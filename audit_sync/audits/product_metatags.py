from __future__ import annotations

from typing import Any

from ..domain import SuggestionType
from ..modules.suggestions.strategies import UNRANKED, SuggestionStrategy, shallow_merge_data

AUDIT_TYPE = "product-metatags"

ISSUE_RANKINGS: dict[str, dict[str, int]] = {
    "title": {"missing": 1, "empty": 2, "duplicate": 5, "long": 8, "short": 8},
    "description": {"missing": 3, "empty": 3, "duplicate": 6, "long": 9, "short": 9},
    "h1": {"missing": 4, "empty": 4, "duplicate": 7, "long": 10, "multiple": 11},
}


def get_issue_ranking(tag_name: str, issue: str) -> int:
    """Rank of the first known word of `issue` for the tag; UNRANKED when none matches."""
    tag_issues = ISSUE_RANKINGS.get(str(tag_name or "").lower())
    if not tag_issues:
        return UNRANKED
    for word in str(issue or "").lower().split(" "):
        if word in tag_issues:
            return tag_issues[word]
    return UNRANKED


def build_suggestion_key(data: dict[str, Any]) -> str:
    url = (data or {}).get("url") or "unknown-url"
    issue = (data or {}).get("issue") or "unknown-issue"
    tag_content = (data or {}).get("tagContent") or ""
    return f"{url}|{issue}|{tag_content}"


class ProductMetatagsStrategy(SuggestionStrategy):
    audit_type = AUDIT_TYPE
    suggestion_type = SuggestionType.METADATA_UPDATE.value
    allow_unranked = True

    def build_key(self, data: dict[str, Any]) -> str:
        return build_suggestion_key(data)

    def map_new_suggestion(self, data: dict[str, Any], opportunity_id: str) -> dict[str, Any]:
        # rank lives on the suggestion, not in its data.
        suggestion_data = {k: v for k, v in data.items() if k != "rank"}
        rank = data.get("rank")
        if rank is None:
            rank = get_issue_ranking(str(data.get("tagName") or ""), str(data.get("issue") or ""))
        return {
            "opportunity_id": opportunity_id,
            "type": self.suggestion_type,
            "rank": rank,
            "data": suggestion_data,
        }

    def merge_data(self, existing_data: dict[str, Any], new_data: dict[str, Any]) -> dict[str, Any]:
        return shallow_merge_data(existing_data, {k: v for k, v in new_data.items() if k != "rank"})
