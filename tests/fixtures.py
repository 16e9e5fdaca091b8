# tests/fixtures.py
"""Reusable test doubles for exporter testing.

These provide:
1. FakeXRayClient - boto3-shaped client whose paginators replay scripted pages
2. RecordingChannel - in-memory DeliveryChannelProtocol implementation
3. Builders for segment documents, segments and traces
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterator
from typing import Any


class FakePaginator:
    """Replays scripted pages; an Exception in the script is raised in place.

    Records the keyword arguments of every paginate() call.
    """

    def __init__(self, pages_for_call: Any) -> None:
        self._pages_for_call = pages_for_call
        self.calls: list[dict[str, Any]] = []

    def paginate(self, **kwargs: Any) -> Iterator[dict[str, Any]]:
        self.calls.append(kwargs)
        pages = self._pages_for_call(kwargs)
        return self._replay(pages)

    @staticmethod
    def _replay(pages: list[Any]) -> Iterator[dict[str, Any]]:
        for page in pages:
            if isinstance(page, BaseException):
                raise page
            yield page


class FakeXRayClient:
    """Minimal stand-in for ``boto3.client("xray")``.

    Example:
        client = FakeXRayClient(
            summary_pages=[summaries("t1", "t2"), summaries("t3")],
            traces={"t1": trace("t1", segment(doc())), ...},
        )
    """

    def __init__(
        self,
        *,
        summary_pages: list[Any] | None = None,
        traces: dict[str, dict[str, Any]] | None = None,
        batch_error: BaseException | None = None,
    ) -> None:
        self._summary_pages = summary_pages or []
        self._traces = traces or {}
        self._batch_error = batch_error
        self.summary_paginator = FakePaginator(lambda _kwargs: list(self._summary_pages))
        self.batch_paginator = FakePaginator(self._batch_pages)
        self.close_count = 0

    def _batch_pages(self, kwargs: dict[str, Any]) -> list[Any]:
        if self._batch_error is not None:
            return [self._batch_error]
        found = [self._traces[tid] for tid in kwargs["TraceIds"] if tid in self._traces]
        missing = [tid for tid in kwargs["TraceIds"] if tid not in self._traces]
        # One page per trace exercises multi-page batch reads
        pages: list[Any] = [{"Traces": [t], "UnprocessedTraceIds": []} for t in found]
        if missing:
            pages.append({"Traces": [], "UnprocessedTraceIds": missing})
        return pages or [{"Traces": [], "UnprocessedTraceIds": []}]

    def get_paginator(self, operation_name: str) -> FakePaginator:
        if operation_name == "get_trace_summaries":
            return self.summary_paginator
        if operation_name == "batch_get_traces":
            return self.batch_paginator
        raise ValueError(f"unexpected paginator {operation_name}")

    @property
    def batch_calls(self) -> list[list[str]]:
        return [call["TraceIds"] for call in self.batch_paginator.calls]

    def close(self) -> None:
        self.close_count += 1


class RecordingChannel:
    """In-memory delivery channel that records every payload."""

    def __init__(self, name: str = "recording") -> None:
        self._name = name
        self.payloads: list[bytes] = []
        self.flush_count = 0
        self.close_count = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def send(self, payload: bytes) -> None:
        with self._lock:
            self.payloads.append(payload)

    def flush(self) -> None:
        self.flush_count += 1

    def close(self) -> None:
        self.close_count += 1


# =============================================================================
# Builders
# =============================================================================


def doc(segment_id: str = "70de5b6f19ff9a0a", **fields: Any) -> str:
    """Serialize a minimal X-Ray segment document."""
    document = {
        "name": "checkout-service",
        "id": segment_id,
        "trace_id": "1-5759e988-bd862e3fe1be46a994272793",
        "start_time": 1.478293361271e9,
        "end_time": 1.478293361449e9,
    }
    document.update(fields)
    return json.dumps(document)


def segment(document: str | None, segment_id: str = "70de5b6f19ff9a0a") -> dict[str, Any]:
    result: dict[str, Any] = {"Id": segment_id}
    if document is not None:
        result["Document"] = document
    return result


def trace(trace_id: str, *segments: dict[str, Any]) -> dict[str, Any]:
    return {"Id": trace_id, "Duration": 0.178, "LimitExceeded": False, "Segments": list(segments)}


def summaries(*trace_ids: str | None) -> dict[str, Any]:
    """Build one GetTraceSummaries page; a None id yields a summary without Id."""
    return {"TraceSummaries": [{"Id": tid} if tid is not None else {"Duration": 0.1} for tid in trace_ids]}
