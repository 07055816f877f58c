"""
Subscriptions and Paginated Broadcast
=====================================

Subscriptions are stored one per key, SUB_<id>, where id is the url-safe
base64 SHA-256 of the push endpoint (the same id the browser client
computes for single-device self tests).

A broadcast walks the subscription namespace one page at a time. Each page
is filtered per subscriber (preferences, plausibility, location-adjusted
score) and sent. BroadcastJob.batches() is a bounded iterator: it stops
after MAX_CHAIN pages even when the store reports more, so a runaway sweep
is impossible. The HTTP continuation endpoint drives the same job one
page per request via process_batch(cursor, chain).
"""

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from aurora_sentinel.config import BATCH_SIZE, MAX_CHAIN
from aurora_sentinel.errors import PushGone, PushTransient
from aurora_sentinel.utils.time import now_ms
from .store import KVStore, SUB_PREFIX
from .thresholds import Alert, subscriber_accepts
from .webpush import WebPushSender, b64url_encode, b64url_decode

log = logging.getLogger('aurora_sentinel.delivery')


class BroadcastMode:
    ALERT = 'alert'      # Real alert, full per-subscriber filtering
    TEST = 'test'        # Synthetic payload, topic preference only


@dataclass
class Location:
    lat: Optional[float] = None
    lon: Optional[float] = None
    timezone: Optional[str] = None


@dataclass
class Subscription:
    endpoint: str
    p256dh: str
    auth: str
    preferences: dict = field(default_factory=dict)
    location: Optional[Location] = None
    created_at: Optional[int] = None

    @property
    def id(self) -> str:
        return subscription_id(self.endpoint)

    def wants(self, topic: str) -> bool:
        """Preference for a topic; topics never set default to enabled."""
        return bool(self.preferences.get(topic, True))

    def to_dict(self) -> dict:
        loc = self.location
        return {
            'endpoint': self.endpoint,
            'keys': {'p256dh': self.p256dh, 'auth': self.auth},
            'preferences': self.preferences,
            'location': None if loc is None else
                {'lat': loc.lat, 'lon': loc.lon, 'timezone': loc.timezone},
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Subscription':
        loc = data.get('location')
        return cls(
            endpoint=data['endpoint'],
            p256dh=data['keys']['p256dh'],
            auth=data['keys']['auth'],
            preferences=data.get('preferences') or {},
            location=Location(loc.get('lat'), loc.get('lon'), loc.get('timezone')) if loc else None,
            created_at=data.get('created_at'),
        )

    @classmethod
    def from_request(cls, body: dict) -> 'Subscription':
        """
        Parse a save-subscription request body.

        Accepts {subscription: {endpoint, keys: {p256dh, auth}}, preferences,
        timezone, location: {lat, lon}}.

        Raises:
            ValueError: on any missing or malformed field
        """
        if not isinstance(body, dict):
            raise ValueError("body must be a JSON object")
        sub = body.get('subscription')
        if not isinstance(sub, dict):
            raise ValueError("missing subscription")
        endpoint = sub.get('endpoint')
        keys = sub.get('keys') or {}
        if not isinstance(keys, dict):
            raise ValueError("subscription.keys must be an object")
        if not isinstance(endpoint, str) or not endpoint.startswith('https://'):
            raise ValueError("subscription.endpoint must be an https URL")
        p256dh, auth = keys.get('p256dh'), keys.get('auth')
        if not isinstance(p256dh, str) or not isinstance(auth, str):
            raise ValueError("subscription.keys.p256dh and .auth are required")
        try:
            if len(b64url_decode(p256dh)) != 65 or len(b64url_decode(auth)) != 16:
                raise ValueError("subscription keys have the wrong length")
        except (ValueError, TypeError) as e:
            raise ValueError(f"invalid subscription keys: {e}") from e

        preferences = body.get('preferences') or {}
        if not isinstance(preferences, dict):
            raise ValueError("preferences must be an object")

        location = None
        raw_loc = body.get('location')
        tz = body.get('timezone')
        if isinstance(raw_loc, dict) or tz:
            raw_loc = raw_loc if isinstance(raw_loc, dict) else {}
            try:
                lat, lon = (float(v) if v is not None else None
                            for v in (raw_loc.get('lat'), raw_loc.get('lon')))
            except (TypeError, ValueError) as e:
                raise ValueError(f"location coordinates must be numbers: {e}") from e
            if lat is not None and not -90 <= lat <= 90:
                raise ValueError(f"latitude out of range: {lat}")
            location = Location(
                lat=lat,
                lon=lon,
                timezone=raw_loc.get('timezone', tz),
            )

        return cls(endpoint, p256dh, auth,
                   preferences={k: bool(v) for k, v in preferences.items()},
                   location=location)


def subscription_id(endpoint: str) -> str:
    return b64url_encode(hashlib.sha256(endpoint.encode('utf-8')).digest())


class SubscriptionRegistry:
    """Subscription CRUD over the key-value store."""

    def __init__(self, store: KVStore):
        self.store = store

    def save(self, subscription: Subscription) -> str:
        existing = self.store.get(SUB_PREFIX + subscription.id)
        subscription.created_at = (existing or {}).get('created_at') or now_ms()
        self.store.put(SUB_PREFIX + subscription.id, subscription.to_dict())
        return subscription.id

    def get(self, sub_id: str) -> Optional[Subscription]:
        data = self.store.get(SUB_PREFIX + sub_id)
        return Subscription.from_dict(data) if data else None

    def delete(self, sub_id: str):
        self.store.delete(SUB_PREFIX + sub_id)

    def list_page(self, cursor: Optional[str] = None,
                  limit: int = BATCH_SIZE) -> tuple[list[Subscription], Optional[str]]:
        items, next_cursor = self.store.list(SUB_PREFIX, cursor, limit)
        subs = []
        for key, data in items:
            try:
                subs.append(Subscription.from_dict(data))
            except (KeyError, TypeError) as e:
                log.warning(f"Dropping unreadable subscription {key}: {e}")
                self.store.delete(key)
        return subs, next_cursor

    def count(self) -> int:
        return self.store.count(SUB_PREFIX)


@dataclass
class BatchResult:
    chain: int
    sent: int = 0
    skipped: int = 0
    gone: int = 0
    failed: int = 0
    next_cursor: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'chain': self.chain,
            'sent': self.sent,
            'skipped': self.skipped,
            'gone': self.gone,
            'failed': self.failed,
            'nextCursor': self.next_cursor,
        }


@dataclass
class BroadcastSummary:
    batches: int = 0
    sent: int = 0
    skipped: int = 0
    gone: int = 0
    failed: int = 0
    truncated: bool = False

    def add(self, batch: BatchResult):
        self.batches += 1
        self.sent += batch.sent
        self.skipped += batch.skipped
        self.gone += batch.gone
        self.failed += batch.failed


class BroadcastJob:
    """
    Fan one payload out to every accepting subscriber, page by page.

    Args:
        registry: Subscription source
        sender: WebPushSender
        topic: Topic the payload belongs to (preference key)
        payload: Push payload {title, body, tag, data}
        alert: The alert being delivered (ALERT mode filtering)
        mode: BroadcastMode.ALERT or BroadcastMode.TEST
        batch_size: Subscriptions per page
        max_chain: Hard ceiling on pages per sweep
    """

    def __init__(self, registry: SubscriptionRegistry, sender: WebPushSender,
                 topic: str, payload: dict, alert: Optional[Alert] = None,
                 mode: str = BroadcastMode.ALERT,
                 batch_size: int = BATCH_SIZE, max_chain: int = MAX_CHAIN):
        if mode == BroadcastMode.ALERT and alert is None:
            raise ValueError("ALERT mode needs the alert for per-subscriber filtering")
        self.registry = registry
        self.sender = sender
        self.topic = topic
        self.payload = payload
        self.alert = alert
        self.mode = mode
        self.batch_size = batch_size
        self.max_chain = max_chain

    @classmethod
    def for_alert(cls, registry, sender, alert: Alert, **kwargs) -> 'BroadcastJob':
        return cls(registry, sender, alert.topic, alert.payload(), alert=alert, **kwargs)

    def accepts(self, subscription: Subscription) -> bool:
        if self.mode == BroadcastMode.TEST:
            return subscription.wants(self.topic)
        return subscriber_accepts(subscription, self.alert)

    def can_continue(self, batch: BatchResult) -> bool:
        return batch.next_cursor is not None and batch.chain + 1 < self.max_chain

    def process_batch(self, cursor: Optional[str] = None, chain: int = 0) -> BatchResult:
        """Send to one page of subscribers starting after `cursor`."""
        if chain >= self.max_chain:
            raise ValueError(f"chain {chain} is at or beyond the ceiling of {self.max_chain}")

        subs, next_cursor = self.registry.list_page(cursor, self.batch_size)
        result = BatchResult(chain=chain, next_cursor=next_cursor)

        for sub in subs:
            if not self.accepts(sub):
                result.skipped += 1
                continue
            try:
                self.sender.send(sub, self.payload)
                result.sent += 1
            except PushGone as e:
                log.info(f"Removing dead subscription {sub.id[:12]} (HTTP {e.status})")
                self.registry.delete(sub.id)
                result.gone += 1
            except PushTransient as e:
                log.warning(f"Transient push failure for {sub.id[:12]}: {e}")
                result.failed += 1

        log.info(f"[{self.topic}] batch {chain}: sent={result.sent} skipped={result.skipped} "
                 f"gone={result.gone} failed={result.failed}")
        return result

    def batches(self, cursor: Optional[str] = None, chain: int = 0) -> Iterator[BatchResult]:
        """Yield batch results until the store is exhausted or the ceiling is hit."""
        while True:
            batch = self.process_batch(cursor, chain)
            yield batch
            if not self.can_continue(batch):
                if batch.next_cursor is not None:
                    log.warning(f"[{self.topic}] stopped at chain ceiling {self.max_chain}; "
                                f"remaining subscribers not reached this sweep")
                return
            cursor, chain = batch.next_cursor, chain + 1

    def run_to_completion(self, cursor: Optional[str] = None) -> BroadcastSummary:
        summary = BroadcastSummary()
        last = None
        for batch in self.batches(cursor):
            summary.add(batch)
            last = batch
        summary.truncated = last is not None and last.next_cursor is not None
        return summary


def synthetic_payload(topic: str) -> dict:
    """Synthetic payload for test triggers."""
    return {
        'title': f"Test notification ({topic})",
        'body': "This is a test push from the aurora alert service.",
        'tag': topic,
        'data': {'url': '/', 'category': topic, 'test': True},
    }
