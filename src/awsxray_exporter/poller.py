# src/awsxray_exporter/poller.py
"""Poll loop: fetch the last interval's traces and forward their segments.

Cadence:
    Each cycle queries ``[now - interval, now)``, drains both paginated
    reads, hands every eligible segment to the delivery channel, then waits
    ``interval`` seconds before the next cycle. The period is therefore
    work duration + interval, not a fixed rate. A trace whose window
    straddles two polls may be forwarded twice.

Failure isolation:
    - Fetch errors abandon the current cycle only (logged, no backoff)
    - A malformed segment document skips that segment only
    - Delivery errors never reach the poll loop (see UdpDeliveryChannel)
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import structlog

from awsxray_exporter.clock import DEFAULT_CLOCK, Clock
from awsxray_exporter.envelope import SegmentDisposition, prepare_segment
from awsxray_exporter.errors import MalformedSegmentError
from awsxray_exporter.fetcher import TimeWindow

if TYPE_CHECKING:
    from awsxray_exporter.config import PollingSettings
    from awsxray_exporter.protocols import DeliveryChannelProtocol, TraceSourceProtocol

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class CycleResult:
    """Counts reported by one poll cycle."""

    window: TimeWindow
    trace_ids_found: int = 0
    traces_fetched: int = 0
    segments_sent: int = 0
    segments_no_document: int = 0
    segments_inferred: int = 0
    segments_malformed: int = 0
    duration_seconds: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def as_log_fields(self) -> dict[str, Any]:
        fields = asdict(self)
        window = fields.pop("window")
        fields["window_start"] = window["start"].isoformat()
        fields["window_end"] = window["end"].isoformat()
        return fields


class Poller:
    """Drives the fetch -> encode -> send pipeline on a fixed delay.

    The trace source and delivery channel are owned by the caller
    (ExporterRuntime) and are never closed here.

    Example:
        >>> poller = Poller(fetcher, channel, settings.polling)
        >>> poller.run(shutdown_event)
    """

    def __init__(
        self,
        source: TraceSourceProtocol,
        channel: DeliveryChannelProtocol,
        settings: PollingSettings,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._source = source
        self._channel = channel
        self._interval = settings.interval_seconds
        self._filter_expression = settings.filter_expression
        self._clock = clock if clock is not None else DEFAULT_CLOCK

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def run(
        self,
        shutdown_event: threading.Event,
        *,
        max_cycles: int | None = None,
    ) -> int:
        """Poll until shutdown is requested.

        A set shutdown event prevents the next cycle from starting and cuts
        the inter-cycle wait short. A cycle already in flight runs to
        completion.

        Args:
            shutdown_event: Event set by the signal handler
            max_cycles: Stop after this many cycles (None = run forever)

        Returns:
            Number of cycles run
        """
        cycles = 0
        while not shutdown_event.is_set():
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if shutdown_event.wait(self._interval):
                break
        logger.info("Poll loop stopped", cycles=cycles)
        return cycles

    def run_cycle(self) -> CycleResult:
        """Run one poll cycle. Never raises for fetch or segment errors."""
        started = self._clock.monotonic()
        window = TimeWindow.ending_at(self._clock.now(), self._interval)
        result = CycleResult(window=window)

        logger.info(
            "Polling X-Ray for traces",
            window_start=window.start.isoformat(),
            window_end=window.end.isoformat(),
            filter_expression=self._filter_expression,
        )

        try:
            self._process_window(window, result)
        except Exception as e:
            result.error = f"{type(e).__name__}: {e}"
            logger.error(
                "Error fetching traces",
                error=str(e),
                error_type=type(e).__name__,
                trace_ids_found=result.trace_ids_found,
                segments_sent=result.segments_sent,
            )

        result.duration_seconds = self._clock.monotonic() - started
        logger.debug("poll_cycle_complete", **result.as_log_fields())
        return result

    def _process_window(self, window: TimeWindow, result: CycleResult) -> None:
        # The summary stream is drained before any batch fetch, so a failure
        # on a later summary page means no trace of this window is sent.
        trace_ids = list(self._source.iter_trace_ids(window, self._filter_expression))
        result.trace_ids_found = len(trace_ids)

        if not trace_ids:
            logger.info("No trace IDs found")
            return

        logger.info("Found traces from xray", count=len(trace_ids))

        for trace in self._source.iter_traces(trace_ids):
            result.traces_fetched += 1
            for segment in trace.get("Segments") or []:
                self._forward_segment(segment, trace.get("Id"), result)

        logger.info(
            "Sent traces to OTel",
            count=result.traces_fetched,
            segments_sent=result.segments_sent,
            segments_inferred=result.segments_inferred,
            segments_no_document=result.segments_no_document,
            segments_malformed=result.segments_malformed,
        )

    def _forward_segment(
        self,
        segment: Mapping[str, Any],
        trace_id: str | None,
        result: CycleResult,
    ) -> None:
        try:
            disposition, payload = prepare_segment(segment)
        except MalformedSegmentError as e:
            result.segments_malformed += 1
            logger.warning(
                "Skipping malformed segment",
                trace_id=trace_id,
                segment_id=e.segment_id,
                error=e.message,
            )
            return

        if disposition is SegmentDisposition.NO_DOCUMENT:
            result.segments_no_document += 1
        elif disposition is SegmentDisposition.INFERRED:
            result.segments_inferred += 1
        elif payload is not None:
            self._channel.send(payload)
            result.segments_sent += 1
