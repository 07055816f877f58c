"""
Tests for environment-driven settings.
"""

from pathlib import Path

from aurora_sentinel.config import GROUND_MAG_URL, Settings, load_settings


class TestLoadSettings:
    """Settings built from an environment mapping."""

    def test_defaults(self):
        settings = load_settings({})
        assert settings.ground_mag_url == GROUND_MAG_URL
        assert settings.ground_mag_is_rate is False
        assert settings.push_enabled is False

    def test_ground_series_already_a_rate(self):
        env = {'AURORA_GROUND_MAG_URL': 'https://mag.example.test', 'AURORA_GROUND_MAG_IS_RATE': 'true'}
        settings = load_settings(env)
        assert settings.ground_mag_url == 'https://mag.example.test'
        assert settings.ground_mag_is_rate is True
        assert load_settings({'AURORA_GROUND_MAG_IS_RATE': '0'}).ground_mag_is_rate is False

    def test_db_path_and_interval(self):
        settings = load_settings({'AURORA_DB_PATH': '/tmp/kv.db', 'AURORA_SCHEDULE_SEC': '30'})
        assert settings.db_path == Path('/tmp/kv.db')
        assert settings.schedule_interval_sec == 30

    def test_admin_secret(self):
        assert not Settings().check_secret(None)
        assert Settings(admin_secret='x').check_secret('x')
        assert not Settings(admin_secret='x').check_secret('y')
