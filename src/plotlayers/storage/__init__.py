"""Durable storage: models, engine and the derived-artifact cache."""
