"""
Error Taxonomy
==============

UpstreamUnavailable  - feed fetch/parse failure; feed treated as empty
MalformedSample      - bad reading; dropped at normalization
CooldownSuppressed   - not an error; intentional no-op
PushGone             - endpoint answered 404/410; subscription deleted
PushTransient        - other non-2xx; subscription kept
ConfigMissing        - no threshold configuration; dependent checks abort
"""


class AuroraSentinelError(Exception):
    """Base class for all package errors."""


class UpstreamUnavailable(AuroraSentinelError):
    def __init__(self, feed: str, reason: str):
        super().__init__(f"{feed}: {reason}")
        self.feed = feed
        self.reason = reason


class MalformedSample(AuroraSentinelError):
    pass


class CooldownSuppressed(AuroraSentinelError):
    def __init__(self, topic: str, remaining_ms: int):
        super().__init__(f"{topic} in cooldown ({remaining_ms / 60000:.1f} min left)")
        self.topic = topic
        self.remaining_ms = remaining_ms


class PushError(AuroraSentinelError):
    def __init__(self, endpoint: str, status: int, body: str = ''):
        super().__init__(f"Push to {endpoint[:48]}... failed with HTTP {status}")
        self.endpoint = endpoint
        self.status = status
        self.body = body


class PushGone(PushError):
    pass


class PushTransient(PushError):
    pass


class ConfigMissing(AuroraSentinelError):
    pass
