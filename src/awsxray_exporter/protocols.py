# src/awsxray_exporter/protocols.py
"""Protocol definitions for the poll loop's collaborators."""

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from awsxray_exporter.fetcher import TimeWindow


@runtime_checkable
class DeliveryChannelProtocol(Protocol):
    """Destination for encoded envelopes.

    Error handling:
        - send() MUST NOT raise and MUST NOT wait for delivery
        - flush() waits for queued payloads to leave the process
        - close() MUST be idempotent - safe to call multiple times
    """

    @property
    def name(self) -> str: ...

    def send(self, payload: bytes) -> None: ...

    def flush(self) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class TraceSourceProtocol(Protocol):
    """Paged source of traces for a time window.

    Errors raised while paginating propagate to the caller; the poll loop
    treats them as a failed cycle.
    """

    def iter_trace_ids(
        self,
        window: "TimeWindow",
        filter_expression: str | None = None,
    ) -> Iterator[str]: ...

    def iter_traces(self, trace_ids: Iterable[str]) -> Iterator[dict[str, Any]]: ...
