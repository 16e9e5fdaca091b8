# src/awsxray_exporter/channel.py
"""UDP delivery channel for segment envelopes.

One connectionless socket, one fixed destination, fire-and-forget sends.

Thread Safety:
    send() is called from the poll thread and only enqueues. A background
    sender thread owns all socket writes.
    - _dropped is protected by _dropped_lock (written by the poll thread,
      read by health_metrics)
    - _sent and _send_failures are only modified by the sender thread
    - health_metrics reads are approximately consistent
"""

from __future__ import annotations

import queue
import socket
import threading
from typing import Any, Final

import structlog

from awsxray_exporter.errors import DeliveryChannelError

logger = structlog.get_logger(__name__)

# Datagrams buffered between the poll thread and the sender thread.
# Not user-configurable.
SEND_QUEUE_SIZE: Final[int] = 10_000


def resolve_destination(host: str, port: int) -> tuple[int, Any]:
    """Resolve ``host:port`` once to a socket family and address.

    Raises:
        DeliveryChannelError: If the host cannot be resolved.
    """
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)
    except (socket.gaierror, UnicodeError) as e:
        raise DeliveryChannelError("udp", f"cannot resolve collector {host}:{port}: {e}") from e
    if not infos:
        raise DeliveryChannelError("udp", f"no addresses for collector {host}:{port}")
    family, _socktype, _proto, _canonname, sockaddr = infos[0]
    return family, sockaddr


class UdpDeliveryChannel:
    """Send envelopes to the collector over UDP without waiting for the outcome.

    send() hands the payload to a queue and returns immediately. The sender
    thread performs sendto(); failures there are logged and counted, never
    raised, and never retried. If the queue is full the datagram is dropped
    with aggregate logging, so the poll loop is never slowed down by the
    collector.

    Example:
        >>> channel = UdpDeliveryChannel("otel-collector", 2000)
        >>> channel.send(envelope)
        >>> channel.flush()
        >>> channel.close()
    """

    _name = "udp"
    _LOG_INTERVAL = 100  # Log every 100 dropped datagrams

    def __init__(
        self,
        host: str,
        port: int,
        *,
        queue_size: int = SEND_QUEUE_SIZE,
    ) -> None:
        """Resolve the destination, open the socket and start the sender thread.

        Args:
            host: Collector hostname or address
            port: Collector UDP port
            queue_size: Maximum datagrams waiting for the sender thread

        Raises:
            DeliveryChannelError: If the destination cannot be resolved or
                the socket cannot be created
        """
        self._host = host
        self._port = port
        family, self._address = resolve_destination(host, port)
        try:
            self._socket = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as e:
            raise DeliveryChannelError(self._name, f"cannot open UDP socket: {e}") from e

        self._sent = 0
        self._send_failures = 0
        self._dropped = 0
        self._last_logged_drop_count = 0

        self._closed = False
        self._close_lock = threading.Lock()
        self._dropped_lock = threading.Lock()
        self._sender_ready = threading.Event()
        self._queue: queue.Queue[bytes | None] = queue.Queue(maxsize=queue_size)

        self._sender = threading.Thread(
            target=self._send_loop,
            name="udp-sender",
            daemon=True,
        )
        self._sender.start()
        self._sender_ready.wait(timeout=5.0)

        logger.debug(
            "delivery_channel_opened",
            host=host,
            port=port,
            address=str(self._address),
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def destination(self) -> tuple[str, int]:
        return self._host, self._port

    @property
    def closed(self) -> bool:
        return self._closed

    def _send_loop(self) -> None:
        """Sender thread: consume the queue until the shutdown sentinel (None)."""
        self._sender_ready.set()

        while True:
            payload = self._queue.get()
            try:
                if payload is None:
                    break
                self._socket.sendto(payload, self._address)
                self._sent += 1
            except OSError as e:
                self._send_failures += 1
                logger.error(
                    "Error sending trace to daemon",
                    host=self._host,
                    port=self._port,
                    payload_bytes=len(payload) if payload is not None else 0,
                    error=str(e),
                )
            except Exception as e:
                # Sender thread must survive anything a single datagram throws at it
                self._send_failures += 1
                logger.error("Sender loop failed unexpectedly", error=str(e))
            finally:
                self._queue.task_done()

    def send(self, payload: bytes) -> None:
        """Queue one datagram for delivery. Never blocks, never raises.

        The outcome of the send is not awaited.
        """
        if self._closed:
            logger.debug("delivery_channel_closed_dropping", payload_bytes=len(payload))
            with self._dropped_lock:
                self._dropped += 1
            return

        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
                self._log_drops_if_needed()

    def _log_drops_if_needed(self) -> None:
        """Log aggregate drop message if threshold reached.

        Must be called while holding _dropped_lock.
        """
        if self._dropped - self._last_logged_drop_count >= self._LOG_INTERVAL:
            logger.warning(
                "Datagrams dropped, send queue full",
                dropped_since_last_log=self._dropped - self._last_logged_drop_count,
                dropped_total=self._dropped,
                queue_maxsize=self._queue.maxsize,
            )
            self._last_logged_drop_count = self._dropped

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Snapshot of delivery counters.

        - datagrams_sent: handed to the socket without error
        - send_failures: sendto() raised
        - datagrams_dropped: queue full or channel already closed
        - queue_depth / queue_maxsize: current backlog
        """
        with self._dropped_lock:
            dropped = self._dropped
        return {
            "datagrams_sent": self._sent,
            "send_failures": self._send_failures,
            "datagrams_dropped": dropped,
            "queue_depth": self._queue.qsize(),
            "queue_maxsize": self._queue.maxsize,
        }

    def flush(self) -> None:
        """Block until every queued datagram has been handed to the socket."""
        if not self._closed:
            self._queue.join()

    def close(self) -> None:
        """Stop the sender thread and close the socket. Idempotent.

        Datagrams already queued are sent before the sentinel is reached.
        """
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        # Guarantee sentinel insertion: send() no longer queues, so draining is safe
        sentinel_sent = False
        for _ in range(self._queue.maxsize + 10):
            try:
                self._queue.put(None, timeout=0.1)
                sentinel_sent = True
                break
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self._queue.task_done()
                    with self._dropped_lock:
                        self._dropped += 1
                except queue.Empty:
                    pass

        if not sentinel_sent:
            logger.error("Failed to send shutdown sentinel - sender thread may hang")

        self._sender.join(timeout=5.0)
        if self._sender.is_alive():
            logger.error("Sender thread did not exit cleanly within timeout")

        try:
            self._socket.close()
        except OSError as e:
            logger.warning("Socket close failed", error=str(e))

        logger.info("Delivery channel closed", **self.health_metrics)
