"""
Shared fixtures and builders for the test suite.
"""

import os
from datetime import datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import ec

from aurora_sentinel.errors import PushGone, PushTransient
from aurora_sentinel.monitoring.normalize import TimeSeriesPoint
from aurora_sentinel.notify.delivery import Location, Subscription
from aurora_sentinel.notify.store import MemoryKVStore
from aurora_sentinel.notify.webpush import DeliveryResult, b64url_encode, _public_bytes

T0 = 1_768_132_800_000  # 2026-01-11T12:00:00Z
MINUTE = 60_000


def minutes(n: float) -> int:
    return T0 + int(n * MINUTE)


def noaa_time(ms: int) -> str:
    """NOAA product timestamp (no zone suffix)."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime('%Y-%m-%d %H:%M:%S.000')


def series(values, start: int = T0, step_minutes: float = 1.0) -> list:
    return [TimeSeriesPoint(start + int(i * step_minutes * MINUTE), v) for i, v in enumerate(values)]


def receiver_keys():
    """Browser-side subscription keys: (p256dh, auth, private key)."""
    key = ec.generate_private_key(ec.SECP256R1())
    return b64url_encode(_public_bytes(key.public_key())), b64url_encode(os.urandom(16)), key


def make_subscription(n: int = 0, lat: float = -45.0, preferences: dict = None) -> Subscription:
    return Subscription(
        endpoint=f"https://push.example.com/send/{n:04d}",
        p256dh='unused-in-fake-sender',
        auth='unused',
        preferences=preferences or {},
        location=Location(lat=lat, lon=170.0, timezone='Pacific/Auckland') if lat is not None else None,
    )


class FakeSender:
    """Records deliveries; endpoints in `gone` / `transient` fail accordingly."""

    def __init__(self, gone=(), transient=()):
        self.sent = []
        self.gone = set(gone)
        self.transient = set(transient)

    def send(self, subscription, payload):
        if subscription.endpoint in self.gone:
            raise PushGone(subscription.endpoint, 410)
        if subscription.endpoint in self.transient:
            raise PushTransient(subscription.endpoint, 503)
        self.sent.append((subscription.endpoint, payload))
        return DeliveryResult(subscription.endpoint, 201)


@pytest.fixture
def store():
    return MemoryKVStore()


@pytest.fixture
def sender():
    return FakeSender()
