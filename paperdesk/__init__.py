# paperdesk/__init__.py
"""Streaming market data ingestion and paper trading."""

__version__ = "0.1.0"
