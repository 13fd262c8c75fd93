"""Asyncio client for the ESPHome native API."""

__version__ = "0.3.0"
