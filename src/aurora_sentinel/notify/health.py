"""
Health - Last Successful Run
============================

The scheduled evaluator stamps LAST_SUCCESSFUL_RUN_TIMESTAMP after every
complete run. The service is unhealthy when that stamp is missing or older
than HEALTH_THRESHOLD_MS (10 minutes).
"""

import logging
from typing import Optional

from aurora_sentinel.config import HEALTH_THRESHOLD_MS
from aurora_sentinel.utils.time import now_ms as _now_ms
from .store import KVStore, LAST_RUN_KEY

log = logging.getLogger('aurora_sentinel.health')


def mark_successful_run(store: KVStore, now_ms: Optional[int] = None) -> int:
    ts = now_ms if now_ms is not None else _now_ms()
    store.put(LAST_RUN_KEY, ts)
    return ts


def check_health(store: KVStore, now_ms: Optional[int] = None,
                 threshold_ms: int = HEALTH_THRESHOLD_MS) -> dict:
    """Health from the last run stamp: {ok, lastRun, ageMs, thresholdMs}."""
    now = now_ms if now_ms is not None else _now_ms()
    last = store.get(LAST_RUN_KEY)
    age = now - last if last is not None else None
    ok = age is not None and age <= threshold_ms
    if not ok:
        log.warning(f"Unhealthy: last successful run "
                    f"{'never' if last is None else f'{age / 1000:.0f}s ago'}")
    return {'ok': ok, 'lastRun': last, 'ageMs': age, 'thresholdMs': threshold_ms}
