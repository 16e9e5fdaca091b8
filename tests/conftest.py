# tests/conftest.py
"""Shared test fixtures.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import logging
import os
from collections.abc import Iterator

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from awsxray_exporter.config import CollectorSettings, ExporterSettings, PollingSettings
from tests.fixtures import FakeXRayClient, RecordingChannel

# =============================================================================
# UdpDeliveryChannel Cleanup Fixture (Thread Leak Prevention)
# =============================================================================


@pytest.fixture(autouse=True)
def _auto_close_delivery_channels() -> Iterator[None]:
    """Close every UdpDeliveryChannel created during a test.

    Each channel starts a sender thread and holds a socket. Tests that
    forget close() would leak both.
    """
    from awsxray_exporter.channel import UdpDeliveryChannel

    created: list[UdpDeliveryChannel] = []
    original_init = UdpDeliveryChannel.__init__

    def tracking_init(self: UdpDeliveryChannel, *args, **kwargs) -> None:
        original_init(self, *args, **kwargs)
        created.append(self)

    UdpDeliveryChannel.__init__ = tracking_init  # type: ignore[method-assign]
    try:
        yield
    finally:
        UdpDeliveryChannel.__init__ = original_init  # type: ignore[method-assign]
        for channel in created:
            channel.close()


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo configure_logging() so handlers never outlive capsys streams."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    try:
        yield
    finally:
        root.handlers = handlers
        root.setLevel(level)
        structlog.reset_defaults()


@pytest.fixture
def polling_settings() -> PollingSettings:
    return PollingSettings(interval_seconds=10)


@pytest.fixture
def exporter_settings() -> ExporterSettings:
    return ExporterSettings(
        collector=CollectorSettings(host="127.0.0.1", port=2000),
        polling=PollingSettings(interval_seconds=10),
        aws_region="us-east-2",
    )


@pytest.fixture
def recording_channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def fake_client() -> FakeXRayClient:
    return FakeXRayClient()


# =============================================================================
# Hypothesis Profiles
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
