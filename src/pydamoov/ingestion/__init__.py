"""Ingestion layer.

Adapters that turn raw realtime messages into normalized domain objects.
"""

__all__: list[str] = []
