"""
Scheduled Evaluator
===================

One scheduled run:
    1. fetch every feed (each independently, with retry)
    2. build the FusionContext (normalize, segment, classify)
    3. load CONFIG_THRESHOLDS (ConfigMissing aborts the threshold checks)
    4. evaluate thresholds -> alerts (edge + cooldown)
    5. broadcast each alert, page by page, bounded by MAX_CHAIN
    6. stamp LAST_SUCCESSFUL_RUN_TIMESTAMP

Overlapping runs are tolerated; see CooldownGate.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from aurora_sentinel.config import Settings
from aurora_sentinel.errors import ConfigMissing
from aurora_sentinel.monitoring.feeds import fetch_all
from aurora_sentinel.monitoring.fusion import FusionContext, build_context
from .delivery import BroadcastJob, BroadcastSummary, SubscriptionRegistry
from .health import mark_successful_run
from .store import KVStore
from .thresholds import Alert, evaluate_cycle, load_config
from .webpush import VapidSigner, WebPushSender

log = logging.getLogger('aurora_sentinel.evaluator')


@dataclass
class RunResult:
    ok: bool
    context: Optional[FusionContext] = None
    alerts: list[Alert] = field(default_factory=list)
    deliveries: dict[str, BroadcastSummary] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> dict:
        ctx = self.context
        return {
            'ok': self.ok,
            'error': self.error,
            'status': ctx.assessment.status if ctx and ctx.assessment else None,
            'score': ctx.score if ctx else None,
            'feeds': ctx.available if ctx else {},
            'alerts': [a.topic for a in self.alerts],
            'deliveries': {topic: vars(s) for topic, s in self.deliveries.items()},
        }


def make_sender(settings: Settings) -> Optional[WebPushSender]:
    """WebPushSender from settings, or None when VAPID keys are not configured."""
    if not settings.push_enabled:
        return None
    return WebPushSender(VapidSigner.from_settings(settings))


def broadcast_alerts(alerts: list[Alert], store: KVStore,
                     sender: Optional[WebPushSender]) -> dict[str, BroadcastSummary]:
    if not alerts:
        return {}
    if sender is None:
        log.warning(f"Push disabled (no VAPID keys); {len(alerts)} alert(s) not delivered")
        return {}
    registry = SubscriptionRegistry(store)
    deliveries = {}
    for alert in alerts:
        summary = BroadcastJob.for_alert(registry, sender, alert).run_to_completion()
        deliveries[alert.topic] = summary
        log.info(f"[{alert.topic}] delivered to {summary.sent} subscriber(s) "
                 f"in {summary.batches} batch(es)")
    return deliveries


def run_scheduled(settings: Settings, store: KVStore,
                  fetch: Optional[Callable] = None,
                  sender: Optional[WebPushSender] = None,
                  now_ms: Optional[int] = None) -> RunResult:
    """
    Execute one scheduled evaluation.

    Args:
        settings: Runtime settings (feed URLs, VAPID keys)
        store: Key-value store
        fetch: Replacement for fetch_json (tests)
        sender: Push sender; built from settings when omitted
        now_ms: Evaluation time (defaults to the wall clock)

    Returns:
        RunResult; ok is False when the threshold configuration is missing
    """
    raw = fetch_all(settings, fetch)
    ctx = build_context(raw, now_ms, ground_is_rate=settings.ground_mag_is_rate)
    status = ctx.assessment.status if ctx.assessment else 'n/a'
    log.info(f"Context built: score={ctx.score} substorm={status} events={len(ctx.events)}")

    try:
        config = load_config(store)
    except ConfigMissing as e:
        log.critical(f"Threshold checks aborted: {e}")
        return RunResult(ok=False, context=ctx, error=str(e))

    alerts = evaluate_cycle(ctx, store, config, ctx.now_ms)
    if sender is None and alerts:
        sender = make_sender(settings)
    deliveries = broadcast_alerts(alerts, store, sender)

    mark_successful_run(store, ctx.now_ms)
    return RunResult(ok=True, context=ctx, alerts=alerts, deliveries=deliveries)
