"""Custom exception hierarchy for pyvtrack."""

from __future__ import annotations


class VtrackError(Exception):
    """Base exception for all pyvtrack errors."""


class VtrackConfigError(VtrackError):
    """Invalid or missing configuration."""


class TelemetryDecodeError(VtrackError):
    """An inbound telemetry message could not be turned into a report.

    Covers undecodable payloads, non-object JSON, topics that do not
    carry a vehicle id, and payloads whose embedded ``vehicle_id``
    disagrees with the id encoded in the topic.
    """

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class StoreError(VtrackError):
    """Persistence collaborator failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)
