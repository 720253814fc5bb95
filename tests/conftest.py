"""Shared test fixtures."""

import httpx
import mlflow
import pytest


@pytest.fixture(autouse=True)
def _disable_mlflow_tracing():
    """Disable MLflow tracing during tests so nothing is written to mlruns/."""
    mlflow.tracing.disable()
    yield
    mlflow.tracing.enable()


@pytest.fixture(autouse=True)
def _clear_caches():
    """Reset the CRUS collection resolver and the reverse geocode cache around each test."""
    from plotlayers.providers.resolver import clear_cache as clear_resolver
    from plotlayers.retrieval.geocode import clear_cache as clear_geocode

    clear_resolver()
    clear_geocode()
    yield
    clear_resolver()
    clear_geocode()


@pytest.fixture
def mock_client():
    """Factory for an httpx.AsyncClient whose requests are answered by `handler`."""

    def _make(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
