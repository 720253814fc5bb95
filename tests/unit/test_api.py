"""Tests for the HTTP boundary: validation, status codes and wire shape."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from plotlayers.api.main import app, health
from plotlayers.core.errors import ProviderUnavailable, ValidationError
from plotlayers.core.types import (
    BoundingBox,
    CachedArtifact,
    Coordinate,
    EnrichmentResponse,
    LayerResult,
)

POLYGON = {
    "type": "Polygon",
    "coordinates": [[[-9.14, 38.722], [-9.139, 38.722], [-9.139, 38.723], [-9.14, 38.723], [-9.14, 38.722]]],
}


def _response(country="PT", **kwargs) -> EnrichmentResponse:
    return EnrichmentResponse(
        coordinate=Coordinate(lat=38.7223, lng=-9.1393),
        country=country,
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc),
        layers=[
            LayerResult.hit("admin-boundary", "Administrative Boundary", {"municipality": "Lisboa"}),
            LayerResult.miss("pt-cadastro", "Cadastro Predial"),
        ],
        enrichments_run=["admin-boundary", "pt-cadastro"],
        **kwargs,
    )


@pytest.fixture
async def api():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


class TestLayerInfoGet:
    async def test_success(self, api):
        mock_enrich = AsyncMock(return_value=_response())
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.get("/layer-info", params={"lat": "38.7223", "lng": "-9.1393"})

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=300"
        body = resp.json()
        assert body["coordinate"] == {"lat": 38.7223, "lng": -9.1393}
        assert body["country"] == "PT"
        assert body["layers"][0] == {
            "layerId": "admin-boundary",
            "layerName": "Administrative Boundary",
            "found": True,
            "data": {"municipality": "Lisboa"},
        }
        assert "data" not in body["layers"][1]
        assert "boundingBox" not in body
        assert "areaM2" not in body

        request = mock_enrich.call_args.args[0]
        assert request.country == "PT"
        assert request.area_m2 is None

    async def test_country_defaults_to_portugal_and_is_case_insensitive(self, api):
        mock_enrich = AsyncMock(return_value=_response(country="ES"))
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.get("/layer-info", params={"lat": "40.4", "lng": "-3.7", "country": "es"})
        assert resp.status_code == 200
        assert mock_enrich.call_args.args[0].country == "ES"

    async def test_area_passed_through(self, api):
        bbox = BoundingBox(min_lng=-9.14, min_lat=38.72, max_lng=-9.13, max_lat=38.73)
        mock_enrich = AsyncMock(return_value=_response(bounding_box=bbox, area_m2=10000))
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.get("/layer-info", params={"lat": "38.7223", "lng": "-9.1393", "area": "10000"})

        assert resp.status_code == 200
        assert resp.json()["areaM2"] == 10000
        assert resp.json()["boundingBox"]["minLng"] == -9.14
        assert mock_enrich.call_args.args[0].area_m2 == 10000

    @pytest.mark.parametrize("params", [
        {},
        {"lat": "38.7"},
        {"lat": "abc", "lng": "-9.1"},
        {"lat": "95", "lng": "-9.1"},
        {"lat": "38.7", "lng": "nan"},
    ])
    async def test_invalid_coordinates(self, api, params):
        mock_enrich = AsyncMock()
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.get("/layer-info", params=params)
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid coordinates")
        mock_enrich.assert_not_called()

    async def test_invalid_country(self, api):
        resp = await api.get("/layer-info", params={"lat": "38.7", "lng": "-9.1", "country": "FR"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid country. Use PT or ES."

    @pytest.mark.parametrize("area", ["-5", "0", "big"])
    async def test_invalid_area(self, api, area):
        resp = await api.get("/layer-info", params={"lat": "38.7", "lng": "-9.1", "area": area})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid area")

    async def test_internal_error(self, api):
        with patch("plotlayers.api.routes.enrich", AsyncMock(side_effect=RuntimeError("boom"))):
            resp = await api.get("/layer-info", params={"lat": "38.7", "lng": "-9.1"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to query layers"

    async def test_correlation_id_echoed(self, api):
        with patch("plotlayers.api.routes.enrich", AsyncMock(return_value=_response())):
            resp = await api.get(
                "/layer-info", params={"lat": "38.7", "lng": "-9.1"}, headers={"X-Request-ID": "req-123"},
            )
        assert resp.headers["x-request-id"] == "req-123"


class TestLayerInfoPost:
    async def test_polygon_success(self, api):
        mock_enrich = AsyncMock(return_value=_response(area_m2=9670, polygon=POLYGON))
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.post("/layer-info", json={"polygon": POLYGON})

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=300"
        assert resp.json()["polygon"] == POLYGON
        request = mock_enrich.call_args.args[0]
        assert request.polygon == POLYGON
        assert request.country == "PT"

    async def test_invalid_json(self, api):
        resp = await api.post("/layer-info", content=b"{not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid JSON body"

    async def test_json_array_body(self, api):
        resp = await api.post("/layer-info", json=[1, 2, 3])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid JSON body"

    @pytest.mark.parametrize("polygon", [
        None,
        {"type": "Point", "coordinates": [0, 0]},
        {"type": "Polygon", "coordinates": []},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [0, 0]]]},
        {"type": "Polygon", "coordinates": [[[0, 0], [1, 1], [1, 1], [0, 0]]]},
    ])
    async def test_invalid_polygon(self, api, polygon):
        resp = await api.post("/layer-info", json={"polygon": polygon})
        assert resp.status_code == 400
        assert resp.json()["detail"].startswith("Invalid polygon")

    @pytest.mark.parametrize("country", ["DE", 5, ["PT"], {"code": "PT"}])
    async def test_invalid_country(self, api, country):
        mock_enrich = AsyncMock()
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.post("/layer-info", json={"polygon": POLYGON, "country": country})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid country. Use PT or ES."
        mock_enrich.assert_not_called()

    async def test_validation_error_from_orchestrator(self, api):
        mock_enrich = AsyncMock(side_effect=ValidationError("Invalid polygon. Provide a valid GeoJSON Polygon with at least 3 vertices."))
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.post("/layer-info", json={"polygon": POLYGON})
        assert resp.status_code == 400


class TestEnrichEndpoint:
    async def test_country_optional(self, api):
        mock_enrich = AsyncMock(return_value=_response())
        with patch("plotlayers.api.routes.enrich", mock_enrich):
            resp = await api.post("/api/v1/enrich", json={"lat": 38.7223, "lng": -9.1393})

        assert resp.status_code == 200
        assert mock_enrich.call_args.args[0].country is None
        assert "persisted" not in resp.json()

    async def test_out_of_range_rejected(self, api):
        resp = await api.post("/api/v1/enrich", json={"lat": 120, "lng": -9.1393})
        assert resp.status_code == 422

    async def test_persists_when_plot_id_given(self, api):
        session = AsyncMock()
        mock_upsert = AsyncMock()
        with (
            patch("plotlayers.api.routes.enrich", AsyncMock(return_value=_response())),
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=session)),
            patch("plotlayers.api.routes.upsert_enrichment", mock_upsert),
        ):
            resp = await api.post("/api/v1/enrich", json={"lat": 38.7223, "lng": -9.1393, "plot_id": "plot-1"})

        assert resp.status_code == 200
        assert resp.json()["persisted"] is True
        assert mock_upsert.call_args.args[1] == "plot-1"
        session.close.assert_awaited_once()

    async def test_persistence_failure_still_returns_layers(self, api):
        with (
            patch("plotlayers.api.routes.enrich", AsyncMock(return_value=_response())),
            patch("plotlayers.api.routes.get_session", AsyncMock(side_effect=ConnectionError("refused"))),
        ):
            resp = await api.post("/api/v1/enrich", json={"lat": 38.7223, "lng": -9.1393, "plot_id": "plot-1"})

        assert resp.status_code == 200
        assert resp.json()["persisted"] is False
        assert len(resp.json()["layers"]) == 2


class TestZoningRulesEndpoints:
    @staticmethod
    def _cache(get_or_compute=None, invalidate=None):
        cache = MagicMock()
        cache.get_or_compute = get_or_compute or AsyncMock()
        cache.invalidate = invalidate or AsyncMock()
        return cache

    async def test_cached_rules(self, api):
        cached = CachedArtifact(
            source_entity_id="7",
            artifact={"max_height_m": 12.0},
            cached_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
            hit=True,
        )
        cache = self._cache(get_or_compute=AsyncMock(return_value=cached))
        with (
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.api.routes.zoning_rules_cache", return_value=cache),
        ):
            resp = await api.get("/api/v1/municipalities/7/zoning-rules")

        assert resp.status_code == 200
        body = resp.json()
        assert body["municipality_id"] == 7
        assert body["cached"] is True
        assert body["rules"] == {"max_height_m": 12.0}
        cache.get_or_compute.assert_awaited_once_with("7")

    async def test_no_source_document(self, api):
        cache = self._cache(get_or_compute=AsyncMock(return_value=None))
        with (
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.api.routes.zoning_rules_cache", return_value=cache),
        ):
            resp = await api.get("/api/v1/municipalities/7/zoning-rules")
        assert resp.status_code == 404

    async def test_extraction_unavailable(self, api):
        cache = self._cache(get_or_compute=AsyncMock(side_effect=ProviderUnavailable("all LLM providers failed")))
        with (
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.api.routes.zoning_rules_cache", return_value=cache),
        ):
            resp = await api.get("/api/v1/municipalities/7/zoning-rules")
        assert resp.status_code == 502
        assert resp.json()["detail"] == "all LLM providers failed"

    async def test_invalidate(self, api):
        cache = self._cache(invalidate=AsyncMock(return_value=True))
        with (
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.api.routes.zoning_rules_cache", return_value=cache),
        ):
            resp = await api.post("/api/v1/municipalities/7/zoning-rules/invalidate")
        assert resp.status_code == 204
        cache.invalidate.assert_awaited_once_with("7")

    async def test_invalidate_unknown(self, api):
        cache = self._cache(invalidate=AsyncMock(return_value=False))
        with (
            patch("plotlayers.api.routes.get_session", AsyncMock(return_value=AsyncMock())),
            patch("plotlayers.api.routes.zoning_rules_cache", return_value=cache),
        ):
            resp = await api.post("/api/v1/municipalities/7/zoning-rules/invalidate")
        assert resp.status_code == 404


class TestHealthEndpoint:
    async def test_health_returns_checks_structure(self):
        mock_session = AsyncMock()
        with (
            patch("plotlayers.api.main.get_session", return_value=mock_session),
            patch("plotlayers.api.main.tracking_healthy", return_value="ok"),
        ):
            result = await health()

        assert result["status"] == "healthy"
        assert result["checks"] == {"database": "ok", "mlflow": "ok"}

    async def test_health_degraded_on_db_failure(self):
        with (
            patch("plotlayers.api.main.get_session", side_effect=ConnectionError("refused")),
            patch("plotlayers.api.main.tracking_healthy", return_value="ok"),
        ):
            result = await health()

        assert result["status"] == "degraded"
        assert "error" in result["checks"]["database"]
