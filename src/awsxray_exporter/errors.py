# src/awsxray_exporter/errors.py
"""Exporter exceptions.

Only startup and per-segment failures are modeled as exceptions. Runtime
delivery problems are never raised to callers - they are logged instead.
"""


class ExporterError(Exception):
    """Base class for all awsxray-exporter errors."""


class SettingsError(ExporterError):
    """Raised when exporter configuration is missing or invalid.

    This is a startup error: the process must not begin polling.
    """


class DeliveryChannelError(ExporterError):
    """Raised when the delivery channel cannot be opened.

    This is raised during channel setup (address resolution, socket
    creation), NOT during send operations. send() must not raise - it
    logs errors instead.

    Attributes:
        channel: Name of the channel that failed
        message: Human-readable error description
    """

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        self.message = message
        super().__init__(f"Delivery channel '{channel}' failed: {message}")


class MalformedSegmentError(ExporterError):
    """Raised when a segment document is not a valid JSON object.

    Scoped to a single segment. The poll loop logs it and moves on to
    the next segment.

    Attributes:
        segment_id: X-Ray segment Id, if the segment carried one
        message: Human-readable error description
    """

    def __init__(self, segment_id: str | None, message: str) -> None:
        self.segment_id = segment_id
        self.message = message
        super().__init__(f"Malformed segment {segment_id or '<unknown>'}: {message}")
