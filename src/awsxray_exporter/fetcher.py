# src/awsxray_exporter/fetcher.py
"""Two-stage paginated reads against the X-Ray API.

Stage 1 lists trace summaries for a time window (GetTraceSummaries).
Stage 2 hydrates the listed traces in chunks (BatchGetTraces). Both are
exposed as generators over boto3 paginators: lazy, finite, single-pass.
Any error raised by a paginator propagates to the caller unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta
from itertools import islice
from typing import TYPE_CHECKING, Any, Final, TypeVar

import structlog

if TYPE_CHECKING:
    from botocore.client import BaseClient

logger = structlog.get_logger(__name__)

# BatchGetTraces rejects more than 5 trace IDs per call
BATCH_GET_TRACES_LIMIT: Final[int] = 5

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TimeWindow:
    """Half-open query window ``[start, end)``."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"TimeWindow start must precede end, got {self.start} >= {self.end}")

    @classmethod
    def ending_at(cls, end: datetime, seconds: float) -> TimeWindow:
        """Build the window of length ``seconds`` that ends at ``end``."""
        return cls(start=end - timedelta(seconds=seconds), end=end)

    @property
    def seconds(self) -> float:
        return (self.end - self.start).total_seconds()


def chunked(items: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield consecutive lists of at most ``size`` items, preserving order.

    Raises:
        ValueError: If size is not positive.
    """
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    iterator = iter(items)
    while chunk := list(islice(iterator, size)):
        yield chunk


class TraceFetcher:
    """Reads traces for a time window from X-Ray.

    The boto3 client is owned by the caller (see ExporterRuntime) and is
    never closed here.

    Example:
        fetcher = TraceFetcher(boto3.client("xray"))
        trace_ids = list(fetcher.iter_trace_ids(window))
        for trace in fetcher.iter_traces(trace_ids):
            ...
    """

    def __init__(self, client: BaseClient) -> None:
        self._client = client

    def iter_trace_ids(
        self,
        window: TimeWindow,
        filter_expression: str | None = None,
    ) -> Iterator[str]:
        """Yield trace IDs recorded in ``window``, in page order.

        Summaries without an Id are skipped. No sorting or deduplication.

        Args:
            window: Query window
            filter_expression: Optional X-Ray filter expression, passed through
        """
        params: dict[str, Any] = {"StartTime": window.start, "EndTime": window.end}
        if filter_expression is not None:
            params["FilterExpression"] = filter_expression

        paginator = self._client.get_paginator("get_trace_summaries")
        for page_number, page in enumerate(paginator.paginate(**params), start=1):
            summaries = page.get("TraceSummaries") or []
            logger.debug("trace_summaries_page", page=page_number, summaries=len(summaries))
            for summary in summaries:
                trace_id = summary.get("Id")
                if trace_id:
                    yield trace_id

    def iter_trace_batches(self, trace_ids: Iterable[str]) -> Iterator[list[str]]:
        """Group trace IDs into BatchGetTraces-sized chunks."""
        return chunked(trace_ids, BATCH_GET_TRACES_LIMIT)

    def iter_batch(self, batch: list[str]) -> Iterator[dict[str, Any]]:
        """Yield hydrated traces for one chunk of at most 5 trace IDs.

        Raises:
            ValueError: If the chunk exceeds the BatchGetTraces limit.
        """
        if len(batch) > BATCH_GET_TRACES_LIMIT:
            raise ValueError(f"BatchGetTraces accepts at most {BATCH_GET_TRACES_LIMIT} trace IDs, got {len(batch)}")
        paginator = self._client.get_paginator("batch_get_traces")
        for page in paginator.paginate(TraceIds=batch):
            unprocessed = page.get("UnprocessedTraceIds") or []
            if unprocessed:
                logger.warning("traces_unprocessed", trace_ids=unprocessed)
            yield from page.get("Traces") or []

    def iter_traces(self, trace_ids: Iterable[str]) -> Iterator[dict[str, Any]]:
        """Yield hydrated traces for all IDs, one BatchGetTraces chunk at a time."""
        for batch in self.iter_trace_batches(trace_ids):
            yield from self.iter_batch(batch)
