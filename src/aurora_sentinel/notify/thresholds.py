"""
Notification Threshold Engine
=============================

Run once per scheduled cycle. For each monitored quantity the freshly
fetched value is compared against a ladder of thresholds and a topic fires
only on an upward crossing relative to the previously *persisted* value
(edge-triggered: a value that stays above T fires once).

Monitored quantities:
    aurora score     -> aurora-40/50/60/80percent
    X-ray flux       -> flare-M1/M5/X1/X5/X10, flare-peak
    substorm status  -> substorm-forecast (edge into >= LIKELY_60)
    IPS shock list   -> ips-shock (new activityID)

Every firing then passes the cooldown check-and-set (COOLDOWN_<topic>).
Per-subscriber filtering (location score adjustment, plausibility filter,
preferences) happens at delivery time via subscriber_accepts().
"""

import logging
import math
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Optional

from aurora_sentinel.errors import ConfigMissing, CooldownSuppressed
from aurora_sentinel.monitoring.constants import (
    Topic,
    SubstormStatus,
    status_severity,
    classify_flux,
    flux_class_label,
    FLARE_THRESHOLDS,
    REFERENCE_LATITUDE,
    EARTH_RADIUS_KM,
    ADJUSTMENT_PER_SEGMENT,
    ADJUSTMENT_SEGMENT_KM,
    MIN_PLAUSIBLE_ABS_LATITUDE,
    FLARE_PEAK_DECLINE_MINUTES,
    DEFAULT_COOLDOWN_MINUTES,
)
from aurora_sentinel.utils.time import MS_PER_MINUTE, now_ms as _now_ms, format_timestamp, from_epoch_ms
from .store import (
    KVStore,
    STATE_PREFIX,
    COOLDOWN_PREFIX,
    LATEST_ALERT_PREFIX,
    CONFIG_THRESHOLDS_KEY,
    FLARE_PEAK_KEY,
    IPS_SEEN_KEY,
)

log = logging.getLogger('aurora_sentinel.thresholds')

IPS_SEEN_LIMIT = 200


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class ThresholdConfig:
    """Threshold ladders and cooldowns, stored under CONFIG_THRESHOLDS."""
    aurora: dict[str, float] = field(default_factory=dict)    # topic -> score %
    flare: dict[str, float] = field(default_factory=dict)     # topic -> flux W/m²
    substorm_min_status: str = SubstormStatus.LIKELY_60
    flare_peak_min_flux: float = FLARE_THRESHOLDS['M']
    cooldown_minutes: dict[str, float] = field(default_factory=dict)
    default_cooldown_minutes: float = DEFAULT_COOLDOWN_MINUTES

    def cooldown_for(self, topic: str) -> float:
        return self.cooldown_minutes.get(topic, self.default_cooldown_minutes)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'ThresholdConfig':
        if not isinstance(data, dict):
            raise ConfigMissing(f"{CONFIG_THRESHOLDS_KEY} is not a mapping")
        try:
            config = cls(
                aurora={k: float(v) for k, v in data.get('aurora', {}).items()},
                flare={k: float(v) for k, v in data.get('flare', {}).items()},
                substorm_min_status=data.get('substorm_min_status', SubstormStatus.LIKELY_60),
                flare_peak_min_flux=float(data.get('flare_peak_min_flux', FLARE_THRESHOLDS['M'])),
                cooldown_minutes={k: float(v) for k, v in data.get('cooldown_minutes', {}).items()},
                default_cooldown_minutes=float(data.get('default_cooldown_minutes',
                                                        DEFAULT_COOLDOWN_MINUTES)),
            )
            status_severity(config.substorm_min_status)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigMissing(f"{CONFIG_THRESHOLDS_KEY} is malformed: {e}") from e
        return config


DEFAULT_THRESHOLDS = ThresholdConfig(
    aurora={
        Topic.AURORA_40: 40,
        Topic.AURORA_50: 50,
        Topic.AURORA_60: 60,
        Topic.AURORA_80: 80,
    },
    flare={
        Topic.FLARE_M1: 1e-5,
        Topic.FLARE_M5: 5e-5,
        Topic.FLARE_X1: 1e-4,
        Topic.FLARE_X5: 5e-4,
        Topic.FLARE_X10: 1e-3,
    },
)


def load_config(store: KVStore) -> ThresholdConfig:
    """
    Read the threshold configuration from the store.

    Raises:
        ConfigMissing: when CONFIG_THRESHOLDS is absent or malformed
    """
    raw = store.get(CONFIG_THRESHOLDS_KEY)
    if raw is None:
        raise ConfigMissing(f"{CONFIG_THRESHOLDS_KEY} not found in store")
    return ThresholdConfig.from_dict(raw)


def seed_config(store: KVStore, config: ThresholdConfig = DEFAULT_THRESHOLDS,
                overwrite: bool = False) -> bool:
    """Write config to the store. Returns False if one exists and overwrite is off."""
    if not overwrite and store.get(CONFIG_THRESHOLDS_KEY) is not None:
        return False
    store.put(CONFIG_THRESHOLDS_KEY, config.to_dict())
    return True


# =============================================================================
# EDGE DETECTION AND COOLDOWN
# =============================================================================

def crossed_thresholds(ladder: dict, previous: Optional[float],
                       current: Optional[float]) -> list[str]:
    """
    Topics whose threshold `current` meets and `previous` did not.

    A missing previous value counts as below every threshold; a missing
    current value crosses nothing.
    """
    if current is None:
        return []
    return [topic for topic, t in sorted(ladder.items(), key=lambda kv: kv[1])
            if current >= t and (previous is None or previous < t)]


class CooldownGate:
    """
    Per-topic check-and-set over COOLDOWN_<topic>.

    Read-then-write with no lock: overlapping runs can both pass. The
    cooldown is best-effort deduplication, not a guarantee.
    """

    def __init__(self, store: KVStore):
        self.store = store

    def last_fired(self, topic: str) -> Optional[int]:
        return self.store.get(COOLDOWN_PREFIX + topic)

    def remaining_ms(self, topic: str, now_ms: int, cooldown_minutes: float) -> int:
        last = self.last_fired(topic)
        if last is None:
            return 0
        return max(0, int(cooldown_minutes * MS_PER_MINUTE - (now_ms - last)))

    def check_and_set(self, topic: str, now_ms: int, cooldown_minutes: float) -> bool:
        """True (allowed, stamp written) or False (suppressed)."""
        last = self.last_fired(topic)
        if last is not None and (now_ms - last) < cooldown_minutes * MS_PER_MINUTE:
            return False
        self.store.put(COOLDOWN_PREFIX + topic, now_ms)
        return True

    def acquire(self, topic: str, now_ms: int, cooldown_minutes: float):
        """check_and_set that raises CooldownSuppressed instead of returning False."""
        if not self.check_and_set(topic, now_ms, cooldown_minutes):
            raise CooldownSuppressed(topic, self.remaining_ms(topic, now_ms, cooldown_minutes))


# =============================================================================
# PER-SUBSCRIBER FILTERING
# =============================================================================

def location_adjustment(lat: float, reference_lat: float = REFERENCE_LATITUDE) -> float:
    """
    Score shift in percentage points for a subscriber at `lat`.

    ±0.2 points per whole 10 km of meridional distance from the reference
    latitude; positive south of the reference (closer to the auroral oval),
    negative north of it.
    """
    distance_km = abs(lat - reference_lat) * math.pi / 180 * EARTH_RADIUS_KM
    segments = math.floor(distance_km / ADJUSTMENT_SEGMENT_KM)
    sign = 1 if lat < reference_lat else -1
    return sign * segments * ADJUSTMENT_PER_SEGMENT


def adjusted_score(base_score: float, lat: Optional[float]) -> float:
    """Base score shifted for latitude, clamped to [0, 100]."""
    if lat is None:
        return base_score
    return max(0.0, min(100.0, base_score + location_adjustment(lat)))


def is_plausible_location(location) -> bool:
    """False for recorded latitudes within ±30° (likely a default/bad geolocation)."""
    if location is None or location.lat is None:
        return True
    return abs(location.lat) > MIN_PLAUSIBLE_ABS_LATITUDE


def subscriber_accepts(subscription, alert: 'Alert') -> bool:
    """
    Whether one subscriber should receive an alert.

    Checks, in order: topic preference (missing = enabled), plausibility of
    the recorded location, and for aurora topics the location-adjusted score
    against the topic's threshold.
    """
    if not subscription.wants(alert.topic):
        return False
    location = subscription.location
    if not is_plausible_location(location):
        return False
    if Topic.is_aurora(alert.topic) and alert.threshold is not None:
        lat = location.lat if location is not None else None
        return adjusted_score(alert.value, lat) >= alert.threshold
    return True


# =============================================================================
# FLARE PEAK
# =============================================================================

class FlarePeakTracker:
    """
    Running flare peak, persisted under FLARE_PEAK.

    A rise above the tracked peak restarts tracking. A "peak" fires once
    flux has declined sample-over-sample for at least
    FLARE_PEAK_DECLINE_MINUTES after the peak, provided the peak reached
    min_flux. Flat or rising samples break the decline run.
    """

    def __init__(self, store: KVStore, decline_minutes: float = FLARE_PEAK_DECLINE_MINUTES):
        self.store = store
        self.decline_ms = decline_minutes * MS_PER_MINUTE

    def load(self) -> Optional[dict]:
        return self.store.get(FLARE_PEAK_KEY)

    def observe(self, xray: list, min_flux: float) -> Optional[dict]:
        """
        Feed new flux samples; returns the peak record when a peak completes.

        Only samples newer than the last one seen are processed, so the same
        day-long series can be passed every cycle.
        """
        state = self.load()
        # First observation only primes the tracker; no stale peaks from the backlog
        priming = state is None
        fired = None
        for p in xray:
            if p.value is None:
                continue
            if state is not None and p.time <= state['last_time']:
                continue

            if state is None or p.value > state['peak_flux'] or \
                    (state['fired'] and p.value > state['last_flux']):
                state = {
                    'peak_flux': p.value,
                    'peak_time': p.time,
                    'decline_start': None,
                    'fired': False,
                    'last_flux': p.value,
                    'last_time': p.time,
                }
                continue

            if p.value < state['last_flux']:
                if state['decline_start'] is None:
                    state['decline_start'] = state['last_time']
            else:
                state['decline_start'] = None

            state['last_flux'] = p.value
            state['last_time'] = p.time

            if (not state['fired'] and state['decline_start'] is not None
                    and p.time - state['decline_start'] >= self.decline_ms
                    and state['peak_flux'] >= min_flux):
                state['fired'] = True
                if not priming:
                    fired = dict(state)

        if state is not None:
            self.store.put(FLARE_PEAK_KEY, state)
        return fired


# =============================================================================
# CYCLE EVALUATION
# =============================================================================

@dataclass
class Alert:
    """One topic firing for this cycle."""
    topic: str
    value: Any
    threshold: Any
    title: str
    body: str
    fired_at: int

    def payload(self) -> dict:
        """Push payload {title, body, tag, data}."""
        return {
            'title': self.title,
            'body': self.body,
            'tag': self.topic,
            'data': {'url': '/', 'category': self.topic, 'value': self.value},
        }

    def to_dict(self) -> dict:
        return asdict(self)


def _state(store: KVStore, topic: str) -> Optional[dict]:
    return store.get(STATE_PREFIX + topic)


def _previous_value(store: KVStore, topic: str):
    state = _state(store, topic)
    return state.get('last_value') if state else None


def _save_state(store: KVStore, topic: str, value, fired_at: Optional[int]):
    previous = _state(store, topic) or {}
    store.put(STATE_PREFIX + topic, {
        'topic': topic,
        'last_value': value,
        'last_fired_at_ms': fired_at if fired_at is not None else previous.get('last_fired_at_ms'),
    })


class ThresholdEngine:
    """Evaluates one cycle's values against the config and persisted state."""

    def __init__(self, store: KVStore, config: ThresholdConfig):
        self.store = store
        self.config = config
        self.gate = CooldownGate(store)

    def _fire(self, alert: Alert) -> Optional[Alert]:
        cooldown = self.config.cooldown_for(alert.topic)
        try:
            self.gate.acquire(alert.topic, alert.fired_at, cooldown)
        except CooldownSuppressed as e:
            log.info(f"Crossed but suppressed: {e}")
            return None
        self.store.put(LATEST_ALERT_PREFIX + alert.topic, alert.to_dict())
        log.info(f"{alert.topic}: firing ({alert.title})")
        return alert

    def _ladder(self, ladder: dict, current: Optional[float], now_ms: int,
                make: Callable) -> list[Alert]:
        fired = []
        for topic, threshold in ladder.items():
            previous = _previous_value(self.store, topic)
            alert = None
            if topic in crossed_thresholds({topic: threshold}, previous, current):
                alert = self._fire(make(topic, threshold, current, now_ms))
            _save_state(self.store, topic, current, alert.fired_at if alert else None)
            if alert:
                fired.append(alert)
        return fired

    def evaluate_aurora(self, score: Optional[float], now_ms: int) -> list[Alert]:
        if score is None:
            log.warning("Aurora score unavailable; skipping aurora topics")
            return []

        def make(topic, threshold, value, ts):
            return Alert(topic, value, threshold,
                         title=f"Aurora forecast {value:.0f}%",
                         body=f"The aurora visibility score has reached {value:.0f}% "
                              f"(alert level {threshold:.0f}%).",
                         fired_at=ts)
        return self._ladder(self.config.aurora, score, now_ms, make)

    def evaluate_flare(self, flux: Optional[float], now_ms: int) -> list[Alert]:
        if flux is None:
            log.warning("X-ray flux unavailable; skipping flare topics")
            return []

        def make(topic, threshold, value, ts):
            label = flux_class_label(value)
            return Alert(topic, value, threshold,
                         title=f"Solar flare {label}",
                         body=f"GOES X-ray flux reached {label} ({value:.2e} W/m²).",
                         fired_at=ts)
        return self._ladder(self.config.flare, flux, now_ms, make)

    def evaluate_flare_peak(self, xray: list, now_ms: int) -> list[Alert]:
        peak = FlarePeakTracker(self.store).observe(xray, self.config.flare_peak_min_flux)
        if peak is None:
            return []
        label = flux_class_label(peak['peak_flux'])
        alert = self._fire(Alert(
            Topic.FLARE_PEAK, peak['peak_flux'], self.config.flare_peak_min_flux,
            title=f"Solar flare peaked at {label}",
            body=f"X-ray flux peaked at {label} at "
                 f"{format_timestamp(from_epoch_ms(peak['peak_time']))} and is now declining.",
            fired_at=now_ms,
        ))
        _save_state(self.store, Topic.FLARE_PEAK, peak['peak_flux'], alert.fired_at if alert else None)
        return [alert] if alert else []

    def evaluate_substorm(self, assessment, now_ms: int) -> list[Alert]:
        if assessment is None:
            return []
        status = assessment.status
        previous = _previous_value(self.store, Topic.SUBSTORM)
        min_rank = status_severity(self.config.substorm_min_status)
        prev_rank = status_severity(previous) if previous in SubstormStatus.ORDER else -1

        alert = None
        if status_severity(status) >= min_rank > prev_rank:
            alert = self._fire(Alert(
                Topic.SUBSTORM, status, self.config.substorm_min_status,
                title=f"Substorm {status.replace('_', ' ').lower()} "
                      f"({assessment.likelihood_pct}% likely)",
                body=assessment.reason,
                fired_at=now_ms,
            ))
        _save_state(self.store, Topic.SUBSTORM, status, alert.fired_at if alert else None)
        return [alert] if alert else []

    def evaluate_ips(self, shocks: list, now_ms: int) -> list[Alert]:
        ids = [s['activityID'] for s in shocks if isinstance(s, dict) and s.get('activityID')]
        if not ids:
            return []
        seen = self.store.get(IPS_SEEN_KEY)
        if seen is None:
            # First run: remember the backlog without announcing it
            self.store.put(IPS_SEEN_KEY, ids[-IPS_SEEN_LIMIT:])
            return []

        new = [s for s in shocks if isinstance(s, dict) and s.get('activityID')
               and s['activityID'] not in seen]
        if not new:
            return []
        self.store.put(IPS_SEEN_KEY, (seen + [s['activityID'] for s in new])[-IPS_SEEN_LIMIT:])

        latest = new[-1]
        alert = self._fire(Alert(
            Topic.IPS_SHOCK, latest['activityID'], None,
            title="Interplanetary shock detected",
            body=f"Shock recorded {latest.get('eventTime', 'recently')}"
                 f" at {latest.get('location', 'L1')}. Aurora activity may increase soon.",
            fired_at=now_ms,
        ))
        _save_state(self.store, Topic.IPS_SHOCK, latest['activityID'], alert.fired_at if alert else None)
        return [alert] if alert else []


def evaluate_cycle(ctx, store: KVStore, config: ThresholdConfig,
                   now_ms: Optional[int] = None) -> list[Alert]:
    """
    Evaluate every monitored quantity of a FusionContext.

    Persists STATE_<topic> for every evaluated topic and LATEST_ALERT_<topic>
    for every topic that fires.

    Returns:
        Alerts that passed edge detection and cooldown
    """
    now_ms = now_ms if now_ms is not None else (ctx.now_ms or _now_ms())
    engine = ThresholdEngine(store, config)

    alerts = []
    alerts += engine.evaluate_aurora(ctx.score, now_ms)
    alerts += engine.evaluate_flare(ctx.latest_xray_flux, now_ms)
    alerts += engine.evaluate_flare_peak(ctx.xray, now_ms)
    alerts += engine.evaluate_substorm(ctx.assessment, now_ms)
    alerts += engine.evaluate_ips(ctx.ips, now_ms)

    log.info(f"Cycle evaluated: {len(alerts)} alert(s)")
    return alerts


def topic_states(store: KVStore) -> dict:
    """topic -> persisted state plus latest alert, for /status."""
    states = {}
    for topic in Topic.ALL:
        states[topic] = {
            'state': _state(store, topic),
            'latest_alert': store.get(LATEST_ALERT_PREFIX + topic),
            'cooldown_last_fired': store.get(COOLDOWN_PREFIX + topic),
        }
    return states
