"""
Aurora Sentinel Notification Module
===================================

Threshold engine, cooldown store, Web Push delivery and the scheduled
evaluator.
"""

from .store import KVStore, MemoryKVStore, SQLiteKVStore, open_store
from .thresholds import (
    Alert,
    ThresholdConfig,
    DEFAULT_THRESHOLDS,
    CooldownGate,
    FlarePeakTracker,
    crossed_thresholds,
    location_adjustment,
    adjusted_score,
    is_plausible_location,
    subscriber_accepts,
    evaluate_cycle,
    load_config,
    seed_config,
)
from .webpush import VapidSigner, WebPushSender, encrypt_payload, generate_vapid_keys
from .delivery import (
    Subscription,
    Location,
    SubscriptionRegistry,
    BroadcastJob,
    BroadcastMode,
)
from .evaluator import run_scheduled, RunResult
from .health import check_health, mark_successful_run

__all__ = [
    'KVStore',
    'MemoryKVStore',
    'SQLiteKVStore',
    'open_store',
    'Alert',
    'ThresholdConfig',
    'DEFAULT_THRESHOLDS',
    'CooldownGate',
    'FlarePeakTracker',
    'crossed_thresholds',
    'location_adjustment',
    'adjusted_score',
    'is_plausible_location',
    'subscriber_accepts',
    'evaluate_cycle',
    'load_config',
    'seed_config',
    'VapidSigner',
    'WebPushSender',
    'encrypt_payload',
    'generate_vapid_keys',
    'Subscription',
    'Location',
    'SubscriptionRegistry',
    'BroadcastJob',
    'BroadcastMode',
    'run_scheduled',
    'RunResult',
    'check_health',
    'mark_successful_run',
]
