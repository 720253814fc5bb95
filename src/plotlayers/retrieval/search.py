"""Web search via the Jina.ai Search API."""

import logging
from urllib.parse import quote

import httpx

from plotlayers.config import settings
from plotlayers.core.errors import FatalError

logger = logging.getLogger(__name__)

JINA_SEARCH_URL = "https://s.jina.ai/"


async def search_web(query: str, client: httpx.AsyncClient, max_results: int = 5) -> list[dict]:
    """Top results as dicts with title, url, description and content.

    Raises:
        FatalError: JINA_API_KEY is not set.
        httpx.HTTPError: transport or HTTP failures, left to the caller's retry policy.
    """
    if not settings.jina_api_key:
        raise FatalError("Web search not configured (JINA_API_KEY not set)")

    resp = await client.get(
        f"{JINA_SEARCH_URL}{quote(query)}",
        headers={
            "Authorization": f"Bearer {settings.jina_api_key}",
            "Accept": "application/json",
            "X-Retain-Images": "none",
        },
    )
    resp.raise_for_status()
    data = resp.json()

    results = []
    for item in (data.get("data") or [])[:max_results]:
        results.append({
            "title": item.get("title") or "",
            "url": item.get("url") or "",
            "description": (item.get("description") or "")[:300],
            "content": (item.get("content") or "")[:500],
        })
    logger.info("Web search returned %d results for %r", len(results), query[:60])
    return results
