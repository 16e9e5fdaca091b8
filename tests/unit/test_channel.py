# tests/unit/test_channel.py
"""Tests for the UDP delivery channel.

Tests cover:
- Real datagram delivery to a local UDP socket
- Address resolution failures at construction
- send() never raises (closed channel, socket errors, full queue)
- close() idempotence and health metrics
"""

import queue
import socket
from collections.abc import Iterator
from unittest.mock import patch

import pytest

from awsxray_exporter.channel import UdpDeliveryChannel, resolve_destination
from awsxray_exporter.envelope import ENVELOPE_HEADER, encode_segment
from awsxray_exporter.errors import DeliveryChannelError
from awsxray_exporter.protocols import DeliveryChannelProtocol
from tests.fixtures import RecordingChannel, doc, segment


@pytest.fixture
def collector() -> Iterator[socket.socket]:
    """A bound UDP socket standing in for the collector."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(2.0)
    try:
        yield sock
    finally:
        sock.close()


def _port(sock: socket.socket) -> int:
    return sock.getsockname()[1]


class TestResolution:
    def test_resolves_ipv4_literal(self) -> None:
        family, address = resolve_destination("127.0.0.1", 2000)
        assert family == socket.AF_INET
        assert address == ("127.0.0.1", 2000)

    def test_unresolvable_host_raises(self) -> None:
        with patch("socket.getaddrinfo", side_effect=socket.gaierror(-2, "Name or service not known")):
            with pytest.raises(DeliveryChannelError) as exc_info:
                UdpDeliveryChannel("collector.invalid", 2000)
        assert exc_info.value.channel == "udp"
        assert "collector.invalid:2000" in exc_info.value.message


class TestDelivery:
    def test_envelope_arrives_byte_for_byte(self, collector: socket.socket) -> None:
        document = doc()
        payload = encode_segment(segment(document))
        assert payload is not None
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))

        channel.send(payload)
        channel.flush()

        received, _ = collector.recvfrom(65535)
        assert received == payload
        assert received.startswith(ENVELOPE_HEADER.encode())
        channel.close()

    def test_one_datagram_per_send(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        payloads = [f"payload-{i}".encode() for i in range(5)]

        for payload in payloads:
            channel.send(payload)
        channel.flush()

        received = {collector.recvfrom(65535)[0] for _ in payloads}
        assert received == set(payloads)
        assert channel.health_metrics["datagrams_sent"] == 5
        channel.close()

    def test_send_returns_before_delivery(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        with patch.object(channel._queue, "put_nowait") as put_nowait:
            channel.send(b"x")
        put_nowait.assert_called_once_with(b"x")
        channel.close()

    def test_satisfies_delivery_channel_protocol(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        assert isinstance(channel, DeliveryChannelProtocol)
        assert isinstance(RecordingChannel(), DeliveryChannelProtocol)
        channel.close()

    def test_destination_is_reported(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        assert channel.destination == ("127.0.0.1", _port(collector))
        assert channel.name == "udp"
        channel.close()


class TestFailureIsolation:
    def test_sendto_error_is_logged_not_raised(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        with patch.object(channel, "_socket") as fake_socket:
            fake_socket.sendto.side_effect = OSError(90, "Message too long")
            channel.send(b"x" * 10)
            channel.flush()

        metrics = channel.health_metrics
        assert metrics["send_failures"] == 1
        assert metrics["datagrams_sent"] == 0
        channel.close()

    def test_sender_survives_failure(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        real_socket = channel._socket
        with patch.object(channel, "_socket") as fake_socket:
            fake_socket.sendto.side_effect = OSError("boom")
            channel.send(b"lost")
            channel.flush()
        channel._socket = real_socket

        channel.send(b"delivered")
        channel.flush()

        assert collector.recvfrom(65535)[0] == b"delivered"
        channel.close()

    def test_full_queue_drops_without_blocking(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        with patch.object(channel._queue, "put_nowait", side_effect=queue.Full):
            channel.send(b"x")
            channel.send(b"y")
        assert channel.health_metrics["datagrams_dropped"] == 2
        channel.close()

    def test_send_after_close_is_dropped(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        channel.close()

        channel.send(b"late")

        assert channel.health_metrics["datagrams_dropped"] == 1


class TestClose:
    def test_close_is_idempotent(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        channel.close()
        channel.close()
        assert channel.closed
        assert not channel._sender.is_alive()

    def test_close_releases_socket(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        channel.close()
        assert channel._socket.fileno() == -1

    def test_queued_datagrams_sent_before_close(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        channel.send(b"before-close")
        channel.close()

        assert collector.recvfrom(65535)[0] == b"before-close"

    def test_flush_after_close_does_not_block(self, collector: socket.socket) -> None:
        channel = UdpDeliveryChannel("127.0.0.1", _port(collector))
        channel.close()
        channel.flush()
