"""Batch job: discover each municipality's official website by web search.

Candidates are filtered (social networks, travel sites) and scored:
official government domain +50, municipality name in URL +30, official
keyword in title +20, name in title +15, official wording in text +10.
"""

import logging
import re
from urllib.parse import urlparse

import httpx

from plotlayers.config import settings
from plotlayers.core.types import BatchReport, MunicipalityTarget
from plotlayers.observability.tracing import trace
from plotlayers.pipeline.batch import BatchWorkerPool
from plotlayers.retrieval.search import search_web
from plotlayers.storage.db import fetch_website_targets, get_session, save_municipality_website

logger = logging.getLogger(__name__)

COUNTRY_HINTS = {
    "PT": ["Câmara Municipal", "Município", "site oficial"],
    "ES": ["Ayuntamiento", "Ajuntament", "web oficial"],
    "DE": ["Gemeinde", "Stadtverwaltung", "Stadt"],
    "FR": ["Mairie", "Commune", "ville"],
    "IT": ["Comune di", "sito ufficiale"],
}

OFFICIAL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"cm-[\w-]+\.pt",
        r"municipio[\w-]*\.pt",
        r"[\w-]+\.gov\.pt",
        r"ayto-[\w-]+\.es",
        r"ayuntamiento[\w-]*\.es",
        r"[\w-]+\.gob\.es",
        r"[\w-]+\.cat",
        r"[\w-]+\.de/stadt",
        r"stadt-[\w-]+\.de",
        r"gemeinde-[\w-]+\.de",
        r"mairie-[\w-]+\.fr",
        r"ville-[\w-]+\.fr",
        r"comune\.[\w-]+\.it",
        r"\.gov\.",
        r"\.gob\.",
    )
]

EXCLUDED_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"wikipedia\.",
        r"facebook\.com",
        r"twitter\.com",
        r"(^|[/.])x\.com",
        r"linkedin\.com",
        r"tripadvisor",
        r"booking\.com",
        r"google\.com",
        r"yelp\.",
        r"yellowpages",
        r"foursquare",
    )
]

OFFICIAL_TITLE_WORDS = ("câmara municipal", "ayuntamiento", "municipality", "gemeinde", "mairie", "comune")
OFFICIAL_TEXT_WORDS = ("official", "government", "municipal", "câmara")


def build_search_query(target: MunicipalityTarget) -> str:
    hints = COUNTRY_HINTS.get((target.country or "").upper(), [])
    district = f" {target.district}" if target.district else ""
    if hints:
        return f"{hints[0]} {target.name}{district} official website"
    return f"{target.name}{district} municipality official government website"


def score_result(result: dict, name: str) -> int:
    url = result.get("url", "").lower()
    title = result.get("title", "").lower()
    text = f"{result.get('description', '')} {result.get('content', '')}".lower()
    name_lower = name.lower()

    score = 0
    if any(p.search(url) for p in OFFICIAL_PATTERNS):
        score += 50
    if re.sub(r"\s+", "-", name_lower) in url or re.sub(r"\s+", "", name_lower) in url:
        score += 30
    if any(word in title for word in OFFICIAL_TITLE_WORDS):
        score += 20
    if name_lower in title:
        score += 15
    if any(word in text for word in OFFICIAL_TEXT_WORDS):
        score += 10
    return score


def normalize_url(url: str) -> str | None:
    """Reduce a result URL to scheme://host, or None when it is not http(s)."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc.lower()}"


def rank_results(results: list[dict], name: str) -> list[tuple[int, dict]]:
    candidates = [r for r in results if r.get("url") and not any(p.search(r["url"]) for p in EXCLUDED_PATTERNS)]
    scored = [(score_result(r, name), r) for r in candidates]
    return sorted(scored, key=lambda pair: pair[0], reverse=True)


async def find_official_website(target: MunicipalityTarget, client: httpx.AsyncClient) -> dict | None:
    """Best website for the municipality, or None when no candidate survives filtering."""
    results = await search_web(build_search_query(target), client)
    ranked = rank_results(results, target.name)
    if not ranked:
        logger.warning("No suitable website candidates for %s", target.name, extra={"municipality": target.name})
        return None

    best_score, best = ranked[0]
    website = normalize_url(best["url"])
    if not website:
        return None
    logger.info("Found %s for %s (score %d)", website, target.name, best_score, extra={"municipality": target.name})
    return {"website_url": website, "score": best_score, "source_urls": [r["url"] for _, r in ranked[:3]]}


@trace(name="enrich_municipality_websites", span_type="CHAIN")
async def enrich_municipality_websites(
    limit: int | None = None,
    concurrency: int | None = None,
    municipality_ids: list[int] | None = None,
    force_refresh: bool = False,
) -> BatchReport:
    """Search and store official websites for municipalities that lack one."""
    session = await get_session()
    try:
        targets = await fetch_website_targets(
            session,
            limit=limit or settings.batch_limit,
            municipality_ids=municipality_ids,
            force_refresh=force_refresh,
        )
    finally:
        await session.close()

    if not targets:
        logger.info("No municipalities require website enrichment")
        return BatchReport()

    logger.info("Enriching %d municipalities with web search", len(targets))
    pool = BatchWorkerPool(
        concurrency=max(1, min(8, concurrency or settings.batch_concurrency)),
        max_retries=settings.batch_max_retries,
        delay_seconds=settings.batch_delay_ms / 1000,
    )

    async with httpx.AsyncClient(timeout=30.0) as client:

        async def work(target: MunicipalityTarget) -> dict | None:
            found = await find_official_website(target, client)
            if found:
                # AsyncSession is not safe to share between concurrent workers
                write_session = await get_session()
                try:
                    await save_municipality_website(
                        write_session, target.id, found["website_url"], found["source_urls"],
                    )
                finally:
                    await write_session.close()
            return found

        report = await pool.run(targets, work, label=lambda t: t.name)

    found = sum(1 for o in report.outcomes if o.status == "succeeded" and o.result)
    logger.info(
        "Website sweep done: %d found, %d without candidates, %d failed",
        found, report.succeeded - found, report.failed,
    )
    return report
