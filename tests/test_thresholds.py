"""
Tests for the notification threshold engine.
"""

import pytest

from aurora_sentinel.errors import ConfigMissing, CooldownSuppressed
from aurora_sentinel.monitoring.constants import (
    SubstormStatus,
    Topic,
    classify_flux,
    flux_class_label,
)
from aurora_sentinel.monitoring.fusion import FusionContext
from aurora_sentinel.monitoring.normalize import ForecastSnapshot, TimeSeriesPoint
from aurora_sentinel.monitoring.substorm import SubstormAssessment
from aurora_sentinel.notify.delivery import Location
from aurora_sentinel.notify.store import (
    CONFIG_THRESHOLDS_KEY,
    COOLDOWN_PREFIX,
    FLARE_PEAK_KEY,
    IPS_SEEN_KEY,
    LATEST_ALERT_PREFIX,
    STATE_PREFIX,
)
from aurora_sentinel.notify.thresholds import (
    DEFAULT_THRESHOLDS,
    Alert,
    CooldownGate,
    FlarePeakTracker,
    ThresholdConfig,
    adjusted_score,
    crossed_thresholds,
    evaluate_cycle,
    is_plausible_location,
    load_config,
    location_adjustment,
    seed_config,
    subscriber_accepts,
    topic_states,
)

from conftest import T0, MINUTE, make_subscription, minutes


def forecast(score):
    return ForecastSnapshot(score, None, None, None, [])


def assessment(status):
    return SubstormAssessment(status, 0.5, 0.6, 56, f"test {status}")


def context(now, score=None, xray=None, status=None, ips=None):
    return FusionContext(
        now_ms=now,
        forecast=forecast(score),
        xray=xray or [],
        assessment=assessment(status) if status else None,
        ips=ips or [],
    )


def fired_topics(alerts):
    return [a.topic for a in alerts]


class TestConfig:
    """CONFIG_THRESHOLDS persistence."""

    def test_missing_raises(self, store):
        with pytest.raises(ConfigMissing):
            load_config(store)

    def test_malformed_raises(self, store):
        store.put(CONFIG_THRESHOLDS_KEY, {'aurora': {'aurora-40percent': 'lots'}})
        with pytest.raises(ConfigMissing):
            load_config(store)

    def test_unknown_status_raises(self, store):
        store.put(CONFIG_THRESHOLDS_KEY, {'substorm_min_status': 'CALM'})
        with pytest.raises(ConfigMissing):
            load_config(store)

    def test_seed_and_load(self, store):
        assert seed_config(store)
        config = load_config(store)
        assert config.aurora == DEFAULT_THRESHOLDS.aurora
        assert config.flare[Topic.FLARE_X1] == pytest.approx(1e-4)
        assert config.cooldown_for(Topic.AURORA_40) == 30

    def test_seed_does_not_overwrite(self, store):
        seed_config(store, ThresholdConfig(aurora={Topic.AURORA_40: 35}))
        assert not seed_config(store)
        assert load_config(store).aurora == {Topic.AURORA_40: 35}
        assert seed_config(store, overwrite=True)
        assert load_config(store).aurora[Topic.AURORA_40] == 40

    def test_per_topic_cooldown(self):
        config = ThresholdConfig(cooldown_minutes={Topic.IPS_SHOCK: 120})
        assert config.cooldown_for(Topic.IPS_SHOCK) == 120
        assert config.cooldown_for(Topic.FLARE_M1) == 30


class TestCrossing:
    """Upward edge relative to the persisted previous value."""

    LADDER = {'a': 40, 'b': 50, 'c': 60}

    def test_upward_crossing(self):
        assert crossed_thresholds(self.LADDER, 45, 52) == ['b']

    def test_multiple_at_once(self):
        assert crossed_thresholds(self.LADDER, 10, 65) == ['a', 'b', 'c']

    def test_staying_above(self):
        assert crossed_thresholds(self.LADDER, 52, 55) == []

    def test_falling(self):
        assert crossed_thresholds(self.LADDER, 55, 45) == []

    def test_exact_threshold(self):
        assert crossed_thresholds(self.LADDER, 49.9, 50) == ['b']

    def test_no_previous(self):
        assert crossed_thresholds(self.LADDER, None, 45) == ['a']

    def test_no_current(self):
        assert crossed_thresholds(self.LADDER, 10, None) == []


class TestCooldownGate:
    """Check-and-set over COOLDOWN_<topic>."""

    def test_first_allowed(self, store):
        gate = CooldownGate(store)
        assert gate.check_and_set('t', T0, 30)
        assert store.get(COOLDOWN_PREFIX + 't') == T0

    def test_suppressed_within_window(self, store):
        gate = CooldownGate(store)
        gate.check_and_set('t', T0, 30)
        assert not gate.check_and_set('t', minutes(29), 30)
        assert store.get(COOLDOWN_PREFIX + 't') == T0

    def test_allowed_at_window_end(self, store):
        gate = CooldownGate(store)
        gate.check_and_set('t', T0, 30)
        assert gate.check_and_set('t', minutes(30), 30)

    def test_acquire_raises(self, store):
        gate = CooldownGate(store)
        gate.acquire('t', T0, 30)
        with pytest.raises(CooldownSuppressed) as exc:
            gate.acquire('t', minutes(10), 30)
        assert exc.value.remaining_ms == 20 * MINUTE

    def test_topics_independent(self, store):
        gate = CooldownGate(store)
        gate.check_and_set('a', T0, 30)
        assert gate.check_and_set('b', T0, 30)


class TestLocationFiltering:
    """Score adjustment and plausibility per subscriber."""

    def test_reference_has_no_adjustment(self):
        assert location_adjustment(-42.45) == 0

    def test_south_is_positive(self):
        # One degree is about 111.2 km -> 11 whole segments
        assert location_adjustment(-43.45) == pytest.approx(2.2)

    def test_north_is_negative(self):
        assert location_adjustment(-41.45) == pytest.approx(-2.2)

    def test_partial_segment_ignored(self):
        assert location_adjustment(-42.45 - 0.05) == 0   # ~5.6 km

    def test_adjusted_score_clamped(self):
        assert adjusted_score(99.0, -60.0) == 100.0
        assert adjusted_score(1.0, -35.0) == 0.0
        assert adjusted_score(47.0, None) == 47.0

    def test_plausibility(self):
        assert is_plausible_location(None)
        assert is_plausible_location(Location(lat=-45.0))
        assert not is_plausible_location(Location(lat=-20.0))
        assert not is_plausible_location(Location(lat=30.0))
        assert is_plausible_location(Location(lat=None))


class TestSubscriberAccepts:
    """Preference, plausibility and adjusted-score gates."""

    ALERT = Alert(Topic.AURORA_50, 52.0, 50.0, 'title', 'body', T0)

    def test_default_preference_enabled(self):
        assert subscriber_accepts(make_subscription(lat=-45.9), self.ALERT)

    def test_preference_disabled(self):
        sub = make_subscription(lat=-45.9, preferences={Topic.AURORA_50: False})
        assert not subscriber_accepts(sub, self.ALERT)

    def test_implausible_location(self):
        assert not subscriber_accepts(make_subscription(lat=-10.0), self.ALERT)

    def test_northern_subscriber_below_threshold(self):
        """Auckland (~620 km north of the reference) loses ~12 points."""
        assert not subscriber_accepts(make_subscription(lat=-36.85), self.ALERT)

    def test_no_location(self):
        assert subscriber_accepts(make_subscription(lat=None), self.ALERT)

    def test_non_aurora_ignores_score(self):
        alert = Alert(Topic.FLARE_M1, 2e-5, 1e-5, 'title', 'body', T0)
        assert subscriber_accepts(make_subscription(lat=-36.85), alert)


class TestFlareClass:
    """Decade classification of GOES long-band flux."""

    @pytest.mark.parametrize("flux,label", [
        (2.4e-5, 'M2.4'),
        (1e-4, 'X1.0'),
        (1.2e-3, 'X12.0'),
        (3e-6, 'C3.0'),
        (5e-9, 'A0.5'),
    ])
    def test_labels(self, flux, label):
        assert flux_class_label(flux) == label

    def test_letter(self):
        assert classify_flux(7e-7)[0] == 'B'


class TestFlarePeakTracker:
    """Peak fires after 5 minutes of continuous decline."""

    RISE = [2e-6, 5e-6, 1e-5, 2e-5, 3e-5]

    def _prime(self, store):
        tracker = FlarePeakTracker(store)
        assert tracker.observe([TimeSeriesPoint(T0, 1e-6)], 1e-5) is None
        return tracker

    def _curve(self, declines):
        values = self.RISE + [3e-5 * (0.9 ** (i + 1)) for i in range(declines)]
        return [TimeSeriesPoint(minutes(i + 1), v) for i, v in enumerate(values)]

    def test_first_observation_only_primes(self, store):
        tracker = FlarePeakTracker(store)
        assert tracker.observe(self._curve(10), 1e-5) is None
        assert store.get(FLARE_PEAK_KEY)['fired'] is True

    def test_four_minutes_of_decline(self, store):
        tracker = self._prime(store)
        assert tracker.observe(self._curve(4), 1e-5) is None

    def test_fires_after_five_minutes(self, store):
        tracker = self._prime(store)
        tracker.observe(self._curve(4), 1e-5)
        peak = tracker.observe(self._curve(5), 1e-5)
        assert peak['peak_flux'] == pytest.approx(3e-5)
        assert peak['peak_time'] == minutes(5)

    def test_fires_once(self, store):
        tracker = self._prime(store)
        assert tracker.observe(self._curve(6), 1e-5) is not None
        assert tracker.observe(self._curve(8), 1e-5) is None

    def test_below_min_flux(self, store):
        tracker = self._prime(store)
        assert tracker.observe(self._curve(6), 1e-4) is None

    def test_plateau_breaks_decline(self, store):
        tracker = self._prime(store)
        curve = self._curve(3)
        curve += [TimeSeriesPoint(minutes(9), curve[-1].value),
                  TimeSeriesPoint(minutes(10), curve[-1].value * 0.9),
                  TimeSeriesPoint(minutes(11), curve[-1].value * 0.8)]
        assert tracker.observe(curve, 1e-5) is None


class TestAuroraScenario:
    """Edge-triggered aurora topics across cycles."""

    def test_crossing_fires_once(self, store):
        seed_config(store)
        first = evaluate_cycle(context(T0, score=45), store, DEFAULT_THRESHOLDS)
        assert Topic.AURORA_50 not in fired_topics(first)

        second = evaluate_cycle(context(minutes(1), score=52), store, DEFAULT_THRESHOLDS)
        assert fired_topics(second) == [Topic.AURORA_50]

        third = evaluate_cycle(context(minutes(2), score=55), store, DEFAULT_THRESHOLDS)
        assert third == []

        state = store.get(STATE_PREFIX + Topic.AURORA_50)
        assert state['last_value'] == 55
        assert state['last_fired_at_ms'] == minutes(1)
        assert store.get(LATEST_ALERT_PREFIX + Topic.AURORA_50)['value'] == 52

    def test_recrossing_within_cooldown(self, store):
        evaluate_cycle(context(T0, score=52), store, DEFAULT_THRESHOLDS)
        evaluate_cycle(context(minutes(5), score=45), store, DEFAULT_THRESHOLDS)
        again = evaluate_cycle(context(minutes(10), score=52), store, DEFAULT_THRESHOLDS)
        assert Topic.AURORA_50 not in fired_topics(again)

        evaluate_cycle(context(minutes(20), score=45), store, DEFAULT_THRESHOLDS)
        later = evaluate_cycle(context(minutes(40), score=52), store, DEFAULT_THRESHOLDS)
        assert Topic.AURORA_50 in fired_topics(later)

    def test_missing_score_keeps_state(self, store):
        evaluate_cycle(context(T0, score=45), store, DEFAULT_THRESHOLDS)
        evaluate_cycle(context(minutes(1), score=None), store, DEFAULT_THRESHOLDS)
        assert store.get(STATE_PREFIX + Topic.AURORA_40)['last_value'] == 45

    def test_alert_payload(self, store):
        alerts = evaluate_cycle(context(T0, score=61), store, DEFAULT_THRESHOLDS)
        payload = alerts[-1].payload()
        assert payload['tag'] == Topic.AURORA_60
        assert payload['data']['category'] == Topic.AURORA_60
        assert '61%' in payload['title']


class TestOtherTopics:
    """Flare ladder, substorm edge and IPS shocks."""

    def test_flare_ladder(self, store):
        xray = [TimeSeriesPoint(T0, 2e-5)]
        assert fired_topics(evaluate_cycle(context(T0, xray=xray), store, DEFAULT_THRESHOLDS)) \
            == [Topic.FLARE_M1]
        xray = [TimeSeriesPoint(minutes(1), 6e-5)]
        assert fired_topics(evaluate_cycle(context(minutes(1), xray=xray), store,
                                           DEFAULT_THRESHOLDS)) == [Topic.FLARE_M5]

    def test_substorm_edge(self, store):
        def run(t, status):
            return fired_topics(evaluate_cycle(context(t, status=status), store, DEFAULT_THRESHOLDS))

        assert run(T0, SubstormStatus.WATCH) == []
        assert run(minutes(1), SubstormStatus.LIKELY_60) == [Topic.SUBSTORM]
        assert run(minutes(2), SubstormStatus.IMMINENT_30) == []
        assert run(minutes(3), SubstormStatus.QUIET) == []
        # Re-entry inside the 30 min cooldown is suppressed
        assert run(minutes(4), SubstormStatus.ONSET) == []
        assert run(minutes(40), SubstormStatus.QUIET) == []
        assert run(minutes(41), SubstormStatus.ONSET) == [Topic.SUBSTORM]

    def test_ips_first_run_seeds(self, store):
        shocks = [{'activityID': 'IPS-1'}, {'activityID': 'IPS-2'}]
        assert evaluate_cycle(context(T0, ips=shocks), store, DEFAULT_THRESHOLDS) == []
        assert store.get(IPS_SEEN_KEY) == ['IPS-1', 'IPS-2']

    def test_ips_new_shock(self, store):
        evaluate_cycle(context(T0, ips=[{'activityID': 'IPS-1'}]), store, DEFAULT_THRESHOLDS)
        shocks = [{'activityID': 'IPS-1'},
                  {'activityID': 'IPS-2', 'eventTime': '2026-01-11T12:30Z', 'location': 'DSCOVR'}]
        alerts = evaluate_cycle(context(minutes(1), ips=shocks), store, DEFAULT_THRESHOLDS)
        assert fired_topics(alerts) == [Topic.IPS_SHOCK]
        assert alerts[0].value == 'IPS-2'
        assert 'DSCOVR' in alerts[0].body

    def test_ips_empty_list_is_noop(self, store):
        assert evaluate_cycle(context(T0, ips=[]), store, DEFAULT_THRESHOLDS) == []
        assert store.get(IPS_SEEN_KEY) is None

    def test_topic_states(self, store):
        evaluate_cycle(context(T0, score=52), store, DEFAULT_THRESHOLDS)
        states = topic_states(store)
        assert set(states) == set(Topic.ALL)
        assert states[Topic.AURORA_50]['cooldown_last_fired'] == T0
        assert states[Topic.FLARE_X10]['state'] is None
