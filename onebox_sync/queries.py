"""Elasticsearch index mapping and query builders for email records."""

from __future__ import annotations

EMAIL_MAPPINGS: dict = {
    "properties": {
        "uid": {"type": "keyword"},
        "subject": {"type": "text"},
        "body": {"type": "text"},
        "account_id": {"type": "keyword"},
        "folder": {"type": "keyword"},
        "date": {"type": "date"},
        "sender": {"type": "keyword"},
        "ai_category": {"type": "keyword"},
    }
}


def build_email_search(
    *,
    q: str | None = None,
    account_id: str | None = None,
    folder: str | None = None,
    page: int = 1,
    size: int = 20,
) -> dict:
    """Build an ES query for the emails index.

    Free text matches subject and body; account and folder are exact
    filters.  Pages are 1-based.
    """
    must: list[dict] = []
    filters: list[dict] = []

    if q:
        must.append({
            "multi_match": {
                "query": q,
                "fields": ["subject", "body"],
            }
        })

    if account_id:
        filters.append({"term": {"account_id": account_id}})

    if folder:
        filters.append({"term": {"folder": folder}})

    return {
        "query": {
            "bool": {
                "must": must or [{"match_all": {}}],
                "filter": filters,
            }
        },
        "sort": [{"date": {"order": "desc"}}],
        "from": (max(page, 1) - 1) * size,
        "size": size,
    }
