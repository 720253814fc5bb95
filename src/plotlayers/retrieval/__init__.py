"""Clients for external collaborators: reverse geocoding, web search, LLM extraction."""
