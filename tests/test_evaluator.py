"""
Tests for the scheduled evaluator and health stamp.
"""

from aurora_sentinel.config import Settings
from aurora_sentinel.monitoring.constants import Topic
from aurora_sentinel.monitoring.feeds import Feed
from aurora_sentinel.notify.evaluator import RunResult, broadcast_alerts, make_sender, run_scheduled
from aurora_sentinel.notify.health import check_health, mark_successful_run
from aurora_sentinel.notify.delivery import SubscriptionRegistry
from aurora_sentinel.notify.store import LAST_RUN_KEY
from aurora_sentinel.notify.thresholds import Alert, seed_config
from aurora_sentinel.notify.webpush import WebPushSender, generate_vapid_keys

from conftest import T0, MINUTE, make_subscription


def fake_fetch(score):
    payloads = {
        Feed.FORECAST: {'currentForecast': {'spotTheAuroraForecast': score}},
        Feed.IPS: [],
    }

    def fetch(url, feed):
        return payloads.get(feed, [])
    return fetch


class TestRunScheduled:
    """One scheduled run end to end."""

    def test_config_missing_aborts(self, store, sender):
        result = run_scheduled(Settings(), store, fetch=fake_fetch(70), sender=sender, now_ms=T0)
        assert not result.ok
        assert 'CONFIG_THRESHOLDS' in result.error
        assert result.alerts == []
        assert store.get(LAST_RUN_KEY) is None
        assert sender.sent == []

    def test_alerts_delivered(self, store, sender):
        seed_config(store)
        SubscriptionRegistry(store).save(make_subscription(1, lat=-45.9))

        result = run_scheduled(Settings(), store, fetch=fake_fetch(52), sender=sender, now_ms=T0)
        assert result.ok
        assert [a.topic for a in result.alerts] == [Topic.AURORA_40, Topic.AURORA_50]
        assert result.deliveries[Topic.AURORA_50].sent == 1
        assert len(sender.sent) == 2
        assert store.get(LAST_RUN_KEY) == T0

    def test_second_run_is_quiet(self, store, sender):
        seed_config(store)
        run_scheduled(Settings(), store, fetch=fake_fetch(52), sender=sender, now_ms=T0)
        result = run_scheduled(Settings(), store, fetch=fake_fetch(53), sender=sender,
                               now_ms=T0 + MINUTE)
        assert result.ok
        assert result.alerts == []
        assert store.get(LAST_RUN_KEY) == T0 + MINUTE

    def test_all_feeds_down_still_completes(self, store, sender):
        seed_config(store)
        result = run_scheduled(Settings(), store, fetch=lambda url, feed: None,
                               sender=sender, now_ms=T0)
        assert result.ok
        assert result.context.score is None

    def test_result_dict(self, store, sender):
        seed_config(store)
        data = run_scheduled(Settings(), store, fetch=fake_fetch(45), sender=sender,
                             now_ms=T0).to_dict()
        assert data['ok'] is True
        assert data['score'] == 45
        assert data['alerts'] == [Topic.AURORA_40]
        assert data['status'] == 'QUIET'

    def test_failed_result_dict(self):
        assert RunResult(ok=False, error='boom').to_dict()['feeds'] == {}


class TestSenderWiring:
    """Push stays off until VAPID keys are configured."""

    def test_no_keys(self):
        assert make_sender(Settings()) is None

    def test_with_keys(self):
        private, public = generate_vapid_keys()
        sender = make_sender(Settings(vapid_private_key=private, vapid_public_key=public))
        assert isinstance(sender, WebPushSender)

    def test_broadcast_without_sender(self, store):
        alert = Alert(Topic.AURORA_40, 41.0, 40.0, 't', 'b', T0)
        assert broadcast_alerts([alert], store, None) == {}


class TestHealth:
    """LAST_SUCCESSFUL_RUN_TIMESTAMP freshness."""

    def test_never_run(self, store):
        result = check_health(store, now_ms=T0)
        assert result == {'ok': False, 'lastRun': None, 'ageMs': None, 'thresholdMs': 600_000}

    def test_fresh(self, store):
        mark_successful_run(store, T0)
        result = check_health(store, now_ms=T0 + 5 * MINUTE)
        assert result['ok']
        assert result['ageMs'] == 5 * MINUTE

    def test_boundary(self, store):
        mark_successful_run(store, T0)
        assert check_health(store, now_ms=T0 + 10 * MINUTE)['ok']
        assert not check_health(store, now_ms=T0 + 10 * MINUTE + 1)['ok']
