# src/awsxray_exporter/envelope.py
"""Segment-to-datagram codec.

The collector's awsxray receiver speaks the X-Ray daemon protocol: each
UDP datagram is a one-line JSON header, a newline, and one segment
document. The document is forwarded exactly as X-Ray returned it; it is
parsed only to decide whether it should be forwarded at all.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from enum import StrEnum
from typing import Any, Final, TypedDict

from awsxray_exporter.errors import MalformedSegmentError

ENVELOPE_HEADER: Final[str] = '{"format": "json", "version": 1}\n'


class SegmentDisposition(StrEnum):
    """Outcome of classifying a segment for forwarding."""

    FORWARD = "forward"
    NO_DOCUMENT = "no_document"
    INFERRED = "inferred"


# =============================================================================
# X-Ray segment document schema
# =============================================================================
#
# Only `inferred` is ever read. The shapes below describe what X-Ray
# returns so callers and tests have names for the fields; nothing is
# validated against them.


class HttpRequest(TypedDict, total=False):
    method: str
    url: str
    user_agent: str
    client_ip: str
    x_forwarded_for: bool
    traced: bool


class HttpResponse(TypedDict, total=False):
    status: int
    content_length: int


class Http(TypedDict, total=False):
    request: HttpRequest
    response: HttpResponse


class CauseException(TypedDict, total=False):
    id: str
    message: str
    type: str
    remote: bool
    truncated: bool
    skipped: bool
    cause: dict[str, str]


class Cause(TypedDict, total=False):
    working_directory: str
    exceptions: list[CauseException]


class Subsegment(TypedDict, total=False):
    id: str
    name: str
    start_time: float
    end_time: float
    in_progress: bool
    trace_id: str
    parent_id: str
    type: str
    namespace: str
    http: Http
    aws: dict[str, Any]
    error: bool
    throttle: bool
    fault: bool
    cause: Cause
    annotations: dict[str, Any]
    metadata: dict[str, Any]
    subsegments: list[Subsegment]
    precursor_ids: list[str]


class TraceDocument(TypedDict, total=False):
    """A parsed X-Ray segment document."""

    name: str
    id: str
    trace_id: str
    start_time: float
    end_time: float
    in_progress: bool
    inferred: bool
    parent_id: str
    annotations: dict[str, Any]
    service: dict[str, str]
    user: str
    origin: str
    metadata: dict[str, Any]
    http: Http
    aws: dict[str, Any]
    error: bool
    throttle: bool
    fault: bool
    cause: Cause
    subsegments: list[Subsegment]


class Segment(TypedDict, total=False):
    """A segment as returned by BatchGetTraces."""

    Id: str
    Document: str
    LimitExceeded: bool


def parse_document(segment: Mapping[str, Any]) -> TraceDocument | None:
    """Parse a segment's Document, or return None when it has none.

    Raises:
        MalformedSegmentError: If the Document is not a JSON object.
    """
    raw = segment.get("Document")
    if not raw:
        return None
    try:
        document = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedSegmentError(segment.get("Id"), f"Document is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise MalformedSegmentError(
            segment.get("Id"),
            f"Document must be a JSON object, got {type(document).__name__}",
        )
    return document  # type: ignore[return-value]


def classify_segment(segment: Mapping[str, Any]) -> SegmentDisposition:
    """Decide whether a segment is eligible for forwarding.

    Inferred segments are nodes X-Ray synthesized for uninstrumented
    downstream calls; re-ingesting them would duplicate X-Ray's own guess.

    Raises:
        MalformedSegmentError: If the Document is not a JSON object.
    """
    document = parse_document(segment)
    if document is None:
        return SegmentDisposition.NO_DOCUMENT
    if document.get("inferred"):
        return SegmentDisposition.INFERRED
    return SegmentDisposition.FORWARD


def build_envelope(document: str) -> bytes:
    """Wrap a raw segment document in the daemon protocol header."""
    return (ENVELOPE_HEADER + document).encode("utf-8")


def prepare_segment(segment: Mapping[str, Any]) -> tuple[SegmentDisposition, bytes | None]:
    """Classify a segment and build its datagram payload in one pass.

    The payload is None unless the disposition is FORWARD.

    Raises:
        MalformedSegmentError: If the Document is not a JSON object.
    """
    disposition = classify_segment(segment)
    if disposition is not SegmentDisposition.FORWARD:
        return disposition, None
    return disposition, build_envelope(segment["Document"])


def encode_segment(segment: Mapping[str, Any]) -> bytes | None:
    """Produce the datagram payload for a segment, or None to skip it.

    Args:
        segment: Segment mapping with optional ``Document`` string

    Returns:
        Header line plus the unmodified Document as UTF-8 bytes, or None
        when the segment has no Document or is inferred.

    Raises:
        MalformedSegmentError: If the Document is not a JSON object.
    """
    return prepare_segment(segment)[1]
