# src/awsxray_exporter/lifecycle.py
"""Process-wide resources and graceful shutdown.

ExporterRuntime owns the two long-lived handles - the X-Ray client and the
UDP delivery channel - builds them once at startup, injects them into the
fetcher and the poll loop, and releases them exactly once on shutdown.

Shutdown Sequence:
    1. SIGTERM/SIGINT sets the shutdown event (no further cycle starts;
       an in-flight cycle runs to completion)
    2. Delivery channel closed (queued datagrams sent, socket closed)
    3. X-Ray client closed (HTTP connection pool released)
"""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

from awsxray_exporter.channel import UdpDeliveryChannel
from awsxray_exporter.errors import SettingsError
from awsxray_exporter.fetcher import TraceFetcher
from awsxray_exporter.poller import Poller

if TYPE_CHECKING:
    from botocore.client import BaseClient

    from awsxray_exporter.clock import Clock
    from awsxray_exporter.config import ExporterSettings
    from awsxray_exporter.poller import CycleResult
    from awsxray_exporter.protocols import DeliveryChannelProtocol

logger = structlog.get_logger(__name__)


def create_xray_client(region: str | None = None) -> BaseClient:
    """Create the boto3 X-Ray client.

    Credentials come from the ambient boto3 chain (environment, web
    identity token, instance profile). ``region=None`` defers to the same
    chain.

    Raises:
        SettingsError: If no region can be determined.
    """
    import boto3
    from botocore.exceptions import NoRegionError

    try:
        return boto3.client("xray", region_name=region)
    except NoRegionError as e:
        raise SettingsError("No AWS region configured: set AWS_REGION or aws_region in the settings file") from e


class ExporterRuntime:
    """Owns the exporter's shared handles and runs the poll loop.

    Example:
        >>> with ExporterRuntime(settings) as runtime:
        ...     runtime.run()
    """

    def __init__(
        self,
        settings: ExporterSettings,
        *,
        client: BaseClient | None = None,
        channel: DeliveryChannelProtocol | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Build the shared handles.

        Args:
            settings: Validated exporter settings
            client: Pre-built X-Ray client (default: create_xray_client())
            channel: Pre-built delivery channel (default: UdpDeliveryChannel
                to the configured collector)
            clock: Clock for the poll loop (default: system clock)

        Raises:
            SettingsError: If the X-Ray client cannot be created
            DeliveryChannelError: If the collector address cannot be resolved
        """
        self._settings = settings
        self._client = client if client is not None else create_xray_client(settings.aws_region)
        if channel is None:
            try:
                channel = UdpDeliveryChannel(settings.collector.host, settings.collector.port)
            except Exception:
                self._close_client()
                raise
        self._channel = channel
        self._fetcher = TraceFetcher(self._client)
        self._poller = Poller(self._fetcher, self._channel, settings.polling, clock=clock)

        self._closed = False
        self._close_lock = threading.Lock()
        self._received_signal: int | None = None

    @property
    def poller(self) -> Poller:
        return self._poller

    @property
    def channel(self) -> DeliveryChannelProtocol:
        return self._channel

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> ExporterRuntime:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def _shutdown_handler_context(self) -> Iterator[threading.Event]:
        """Install SIGINT/SIGTERM handlers that set a shutdown event.

        On first signal: sets the event and restores the default SIGINT
        handler (so a second Ctrl-C force-kills via KeyboardInterrupt).

        From a non-main thread, signal registration is skipped - Python
        raises ValueError if signal.signal() is called outside the main
        thread. The returned Event still works.
        """
        shutdown_event = threading.Event()

        if threading.current_thread() is not threading.main_thread():
            yield shutdown_event
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, frame: Any) -> None:
            self._received_signal = signum
            shutdown_event.set()
            signal.signal(signal.SIGINT, signal.default_int_handler)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield shutdown_event
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)

    def run(
        self,
        *,
        max_cycles: int | None = None,
        shutdown_event: threading.Event | None = None,
    ) -> int:
        """Run the poll loop until shutdown, then release all handles.

        Args:
            max_cycles: Stop after this many cycles (None = until signalled)
            shutdown_event: Pre-created shutdown event for testing. When
                provided, signal handler installation is skipped.

        Returns:
            Number of poll cycles run
        """
        logger.info(
            "Exporter starting",
            collector_host=self._settings.collector.host,
            collector_port=self._settings.collector.port,
            interval_seconds=self._settings.polling.interval_seconds,
            filter_expression=self._settings.polling.filter_expression,
            aws_region=self._settings.aws_region,
        )
        try:
            if shutdown_event is not None:
                return self._poller.run(shutdown_event, max_cycles=max_cycles)
            with self._shutdown_handler_context() as event:
                return self._poller.run(event, max_cycles=max_cycles)
        finally:
            if self._received_signal is not None:
                logger.info(
                    "Received shutdown signal, shutting down gracefully",
                    signal=signal.Signals(self._received_signal).name,
                )
            self.close()

    def run_once(self) -> CycleResult:
        """Run a single poll cycle and flush the delivery channel."""
        result = self._poller.run_cycle()
        self._channel.flush()
        return result

    def _close_client(self) -> None:
        try:
            self._client.close()
        except Exception as e:
            logger.warning("X-Ray client close failed", error=str(e))

    def close(self) -> None:
        """Close the delivery channel, then the X-Ray client. Runs once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        try:
            self._channel.close()
        except Exception as e:
            logger.warning("Delivery channel close failed", channel=self._channel.name, error=str(e))
        self._close_client()
        logger.info("Exporter stopped")
