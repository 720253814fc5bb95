"""Orchestration: provider routing, enrichment fan-out and batch jobs."""
