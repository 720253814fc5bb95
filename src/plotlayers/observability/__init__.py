"""Observability: structured logging and MLflow tracing helpers."""

from plotlayers.observability.logging import get_correlation_id, setup_logging

__all__ = ["get_correlation_id", "setup_logging"]
