"""Tests for the municipality website discovery job and web search client."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from plotlayers.core.errors import FatalError
from plotlayers.core.types import MunicipalityTarget
from plotlayers.pipeline.websites import (
    build_search_query,
    enrich_municipality_websites,
    find_official_website,
    normalize_url,
    rank_results,
    score_result,
)
from plotlayers.retrieval.search import search_web

LISBOA = MunicipalityTarget(id=1, name="Lisboa", district="Lisboa", country="PT")

OFFICIAL = {
    "url": "https://www.cm-lisboa.pt/viver/urbanismo",
    "title": "Câmara Municipal de Lisboa",
    "description": "Official portal of the municipal council",
    "content": "",
}
NEWS = {
    "url": "https://www.publico.pt/lisboa",
    "title": "Notícias de Lisboa",
    "description": "Jornal",
    "content": "",
}
WIKI = {
    "url": "https://pt.wikipedia.org/wiki/Lisboa",
    "title": "Lisboa – Wikipédia",
    "description": "",
    "content": "",
}


class TestBuildSearchQuery:
    def test_country_hint(self):
        assert build_search_query(LISBOA) == "Câmara Municipal Lisboa Lisboa official website"

    def test_spain_hint(self):
        target = MunicipalityTarget(id=2, name="Sevilla", country="es")
        assert build_search_query(target) == "Ayuntamiento Sevilla official website"

    def test_no_country(self):
        target = MunicipalityTarget(id=3, name="Springfield")
        assert build_search_query(target) == "Springfield municipality official government website"


class TestScoring:
    def test_official_result_scores_every_signal(self):
        assert score_result(OFFICIAL, "Lisboa") == 50 + 30 + 20 + 15 + 10

    def test_news_result(self):
        assert score_result(NEWS, "Lisboa") == 30 + 15

    def test_multiword_name_in_url(self):
        result = {"url": "https://www.cm-vilanovadegaia.pt", "title": ""}
        assert score_result(result, "Vila Nova de Gaia") == 50 + 30

    def test_rank_excludes_and_orders(self):
        ranked = rank_results([NEWS, WIKI, OFFICIAL, {"url": ""}], "Lisboa")
        assert [r["url"] for _, r in ranked] == [OFFICIAL["url"], NEWS["url"]]

    def test_x_com_excluded_but_not_lookalikes(self):
        ranked = rank_results(
            [{"url": "https://x.com/cmlisboa"}, {"url": "https://www.box.com/lisboa"}], "Lisboa",
        )
        assert [r["url"] for _, r in ranked] == ["https://www.box.com/lisboa"]


class TestNormalizeUrl:
    def test_host_only(self):
        assert normalize_url("https://WWW.cm-lisboa.pt/viver?x=1") == "https://www.cm-lisboa.pt"

    def test_non_http(self):
        assert normalize_url("ftp://cm-lisboa.pt") is None
        assert normalize_url("not a url") is None


class TestFindOfficialWebsite:
    async def test_best_candidate(self):
        with patch("plotlayers.pipeline.websites.search_web", AsyncMock(return_value=[NEWS, OFFICIAL])):
            found = await find_official_website(LISBOA, MagicMock())

        assert found["website_url"] == "https://www.cm-lisboa.pt"
        assert found["score"] == 125
        assert found["source_urls"] == [OFFICIAL["url"], NEWS["url"]]

    async def test_only_excluded_candidates(self):
        with patch("plotlayers.pipeline.websites.search_web", AsyncMock(return_value=[WIKI])):
            assert await find_official_website(LISBOA, MagicMock()) is None


class TestSearchWeb:
    async def test_requires_api_key(self, mock_client):
        with patch("plotlayers.retrieval.search.settings") as mock_settings:
            mock_settings.jina_api_key = ""
            with pytest.raises(FatalError):
                await search_web("Lisboa", mock_client(lambda request: httpx.Response(200)))

    async def test_parses_results(self, mock_client):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["host"] = request.url.host
            return httpx.Response(200, json={"data": [
                {"title": "CM Lisboa", "url": "https://www.cm-lisboa.pt", "description": "x" * 400},
                {"title": "Other", "url": "https://example.pt"},
            ]})

        with patch("plotlayers.retrieval.search.settings") as mock_settings:
            mock_settings.jina_api_key = "jina_test"
            results = await search_web("Câmara Municipal Lisboa", mock_client(handler), max_results=1)

        assert len(results) == 1
        assert results[0]["url"] == "https://www.cm-lisboa.pt"
        assert len(results[0]["description"]) == 300
        assert results[0]["content"] == ""
        assert seen["auth"] == "Bearer jina_test"
        assert seen["host"] == "s.jina.ai"

    async def test_http_error_propagates(self, mock_client):
        with patch("plotlayers.retrieval.search.settings") as mock_settings:
            mock_settings.jina_api_key = "jina_test"
            with pytest.raises(httpx.HTTPStatusError):
                await search_web("Lisboa", mock_client(lambda request: httpx.Response(429)))


class TestEnrichMunicipalityWebsites:
    async def test_saves_found_websites(self):
        targets = [LISBOA, MunicipalityTarget(id=2, name="Nowhere", country="PT")]
        found = {"website_url": "https://www.cm-lisboa.pt", "score": 125, "source_urls": [OFFICIAL["url"]]}
        mock_save = AsyncMock()

        async def fake_find(target, client):
            return found if target.id == 1 else None

        with (
            patch("plotlayers.pipeline.websites.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.pipeline.websites.fetch_website_targets", AsyncMock(return_value=targets)),
            patch("plotlayers.pipeline.websites.find_official_website", side_effect=fake_find),
            patch("plotlayers.pipeline.websites.save_municipality_website", mock_save),
        ):
            report = await enrich_municipality_websites(limit=10, concurrency=2)

        assert report.succeeded == 2
        assert report.failed == 0
        mock_save.assert_awaited_once()
        assert mock_save.call_args.args[1:] == (1, "https://www.cm-lisboa.pt", [OFFICIAL["url"]])

    async def test_search_failure_recorded(self):
        with (
            patch("plotlayers.pipeline.websites.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.pipeline.websites.fetch_website_targets", AsyncMock(return_value=[LISBOA])),
            patch("plotlayers.pipeline.websites.find_official_website", AsyncMock(side_effect=FatalError("no key"))),
        ):
            report = await enrich_municipality_websites(limit=10)

        assert report.failed == 1
        assert "no key" in report.outcomes[0].error

    async def test_nothing_to_do(self):
        with (
            patch("plotlayers.pipeline.websites.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.pipeline.websites.fetch_website_targets", AsyncMock(return_value=[])),
        ):
            report = await enrich_municipality_websites()

        assert report.outcomes == []
