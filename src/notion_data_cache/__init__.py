"""Caching façade over the Notion database query API."""

__version__ = "0.1.0"
