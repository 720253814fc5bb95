"""Thin MLflow tracing layer shared by the orchestrator, providers and batch jobs.

Usage:

    from plotlayers.observability.tracing import trace, start_span

    @trace(name="enrich", span_type="CHAIN")
    async def enrich(...): ...

    with start_span("provider_pt_cadastro", span_type="RETRIEVER") as span:
        span.set_inputs({...})

Tracking backend errors (unreachable store, bad URI) are logged and never
interrupt an enrichment.
"""

import logging
from contextlib import contextmanager

import mlflow

logger = logging.getLogger(__name__)


def trace(name: str | None = None, **kwargs):
    """Decorator: wrap a sync or async function in an MLflow trace."""
    return mlflow.trace(name=name, **kwargs) if name else mlflow.trace(**kwargs)


@contextmanager
def start_span(name: str = "span", **kwargs):
    """Context manager yielding an MLflow span."""
    with mlflow.start_span(name=name, **kwargs) as span:
        yield span


def configure_tracking(tracking_uri: str, experiment_name: str) -> bool:
    """Point MLflow at the tracking store. Returns False when it is unreachable."""
    try:
        mlflow.set_tracking_uri(tracking_uri)
        mlflow.set_experiment(experiment_name)
        mlflow.config.enable_async_logging()
    except Exception as e:
        logger.warning("MLflow tracking unavailable (%s): %s", tracking_uri, e)
        return False
    logger.info("MLflow tracing enabled: %s", tracking_uri)
    return True


def tracking_healthy() -> str:
    """Return "ok" or an error string, for the health endpoint."""
    try:
        mlflow.search_experiments(max_results=1)
        return "ok"
    except Exception as e:
        return f"error: {e}"
