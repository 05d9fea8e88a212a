"""Ingestion layer.

This package contains the adapters that turn inbound MQTT messages into
normalized reports, serialize them per vehicle, and drive them through
the processing pipeline.
"""

__all__: list[str] = []
