"""
Server - FastAPI Push Service
=============================

Runs the scheduled evaluator in a background thread and exposes the
subscription, status and trigger endpoints.

Endpoints:
    POST /save-subscription         - Store a push subscription (201 / 400)
    GET  /status?secret=            - Per-topic state, health, counts
    GET  /health                    - {ok, lastRun, ageMs, thresholdMs}; 503 when stale
    GET  /trigger-test-push         - Topic-targeted synthetic broadcast (admin)
    POST /trigger-test-push-for-me  - Single-subscriber self test
    POST /broadcast-batch           - One page of a broadcast; continues in background
    POST /run?secret=               - One scheduled run now (admin)

Usage:
    aurora-sentinel serve
    uvicorn --factory aurora_sentinel.server:create_app
"""

import logging
import sqlite3
import threading
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Body, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from aurora_sentinel import __version__
from aurora_sentinel.config import MAX_CHAIN, Settings, load_settings
from aurora_sentinel.errors import AuroraSentinelError, PushGone, PushTransient
from aurora_sentinel.monitoring.constants import Topic
from aurora_sentinel.notify.delivery import (
    BroadcastJob,
    BroadcastMode,
    Subscription,
    SubscriptionRegistry,
    synthetic_payload,
)
from aurora_sentinel.notify.evaluator import make_sender, run_scheduled
from aurora_sentinel.notify.health import check_health
from aurora_sentinel.notify.store import KVStore, LATEST_ALERT_PREFIX, open_store
from aurora_sentinel.notify.thresholds import Alert, topic_states
from aurora_sentinel.notify.webpush import WebPushSender

log = logging.getLogger('aurora_sentinel.server')


class BroadcastBatchRequest(BaseModel):
    secret: Optional[str] = None
    mode: str = BroadcastMode.ALERT
    topic: str
    cursor: Optional[str] = None
    chain: int = 0
    overridePayload: Optional[dict] = None


class SelfTestRequest(BaseModel):
    subscription: dict
    category: str = Topic.AURORA_50


class Scheduler:
    """Background thread running the scheduled evaluator every interval."""

    def __init__(self, settings: Settings, store: KVStore,
                 sender: Optional[WebPushSender] = None):
        self.settings = settings
        self.store = store
        self.sender = sender
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _loop(self):
        log.info(f"Scheduler started (every {self.settings.schedule_interval_sec}s)")
        while not self._stop.is_set():
            try:
                run_scheduled(self.settings, self.store, sender=self.sender)
            except (AuroraSentinelError, sqlite3.Error, ValueError) as e:
                log.error(f"Scheduled run failed: {e}. Retrying next interval")
            except Exception:
                log.exception("Unexpected error in scheduled run. Retrying next interval")
            self._stop.wait(self.settings.schedule_interval_sec)
        log.info("Scheduler stopped")

    def start(self):
        self._thread = threading.Thread(target=self._loop, name='aurora-scheduler', daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)


def _require_secret(request: Request, secret: Optional[str]):
    if not request.app.state.settings.check_secret(secret):
        raise HTTPException(status_code=403, detail="forbidden")


def _require_sender(request: Request) -> WebPushSender:
    sender = request.app.state.sender
    if sender is None:
        raise HTTPException(status_code=503, detail="push delivery is not configured")
    return sender


def _drain(job: BroadcastJob, cursor: str, chain: int):
    """Background continuation: remaining pages up to the chain ceiling."""
    for _ in job.batches(cursor, chain):
        pass


def _start_broadcast(job: BroadcastJob, background: BackgroundTasks,
                     cursor: Optional[str] = None, chain: int = 0) -> dict:
    batch = job.process_batch(cursor, chain)
    continued = job.can_continue(batch)
    if continued:
        background.add_task(_drain, job, batch.next_cursor, chain + 1)
    return {**batch.to_dict(), 'continued': continued}


def create_app(settings: Optional[Settings] = None, store: Optional[KVStore] = None,
               sender: Optional[WebPushSender] = None,
               start_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        settings: Runtime settings (default: from environment)
        store: Key-value store (default: SQLite at settings.db_path)
        sender: Push sender (default: from VAPID settings, None if unset)
        start_scheduler: Run the scheduled evaluator in a background thread
    """
    settings = settings or load_settings()
    store = store or open_store(settings.db_path)
    sender = sender or make_sender(settings)
    scheduler = Scheduler(settings, store, sender) if start_scheduler else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        log.info("Server ready")
        yield
        if scheduler is not None:
            scheduler.stop()

    app = FastAPI(title="Aurora Sentinel", description="Aurora and space weather push alerts",
                  version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.sender = sender
    app.state.registry = SubscriptionRegistry(store)

    @app.post("/save-subscription", status_code=201)
    def save_subscription(request: Request, body: dict = Body(...)):
        try:
            subscription = Subscription.from_request(body)
        except (ValueError, TypeError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        sub_id = request.app.state.registry.save(subscription)
        log.info(f"Saved subscription {sub_id[:12]}")
        return {'id': sub_id}

    @app.get("/status")
    def status(request: Request, secret: Optional[str] = None):
        _require_secret(request, secret)
        state = request.app.state
        return {
            'topics': topic_states(state.store),
            'health': check_health(state.store),
            'subscriptions': state.registry.count(),
            'pushEnabled': state.sender is not None,
        }

    @app.get("/health")
    def health(request: Request):
        result = check_health(request.app.state.store)
        return JSONResponse(content=result, status_code=200 if result['ok'] else 503)

    @app.get("/trigger-test-push")
    def trigger_test_push(request: Request, background: BackgroundTasks,
                          secret: Optional[str] = None, type: str = Topic.AURORA_50):
        _require_secret(request, secret)
        if type not in Topic.ALL:
            raise HTTPException(status_code=400, detail=f"unknown topic: {type}")
        job = BroadcastJob(request.app.state.registry, _require_sender(request),
                           topic=type, payload=synthetic_payload(type), mode=BroadcastMode.TEST)
        return _start_broadcast(job, background)

    @app.post("/trigger-test-push-for-me")
    def trigger_test_push_for_me(request: Request, body: SelfTestRequest):
        sender = _require_sender(request)
        try:
            subscription = Subscription.from_request({'subscription': body.subscription})
        except (ValueError, TypeError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        try:
            result = sender.send(subscription, synthetic_payload(body.category))
        except PushGone as e:
            request.app.state.registry.delete(subscription.id)
            raise HTTPException(status_code=410, detail=str(e))
        except PushTransient as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {'ok': True, 'id': subscription.id, 'status': result.status}

    @app.post("/broadcast-batch")
    def broadcast_batch(request: Request, body: BroadcastBatchRequest,
                        background: BackgroundTasks):
        _require_secret(request, body.secret)
        if body.topic not in Topic.ALL:
            raise HTTPException(status_code=400, detail=f"unknown topic: {body.topic}")
        if not 0 <= body.chain < MAX_CHAIN:
            raise HTTPException(status_code=400, detail=f"chain must be in [0, {MAX_CHAIN})")
        state = request.app.state
        sender = _require_sender(request)

        if body.mode == BroadcastMode.TEST:
            job = BroadcastJob(state.registry, sender, topic=body.topic,
                               payload=body.overridePayload or synthetic_payload(body.topic),
                               mode=BroadcastMode.TEST)
        elif body.mode == BroadcastMode.ALERT:
            latest = state.store.get(LATEST_ALERT_PREFIX + body.topic)
            if latest is None:
                raise HTTPException(status_code=404, detail=f"no alert recorded for {body.topic}")
            alert = Alert(**latest)
            job = BroadcastJob(state.registry, sender, topic=body.topic,
                               payload=body.overridePayload or alert.payload(), alert=alert)
        else:
            raise HTTPException(status_code=400, detail=f"unknown mode: {body.mode}")

        return _start_broadcast(job, background, body.cursor, body.chain)

    @app.post("/run")
    def run_now(request: Request, secret: Optional[str] = None):
        _require_secret(request, secret)
        state = request.app.state
        result = run_scheduled(state.settings, state.store, sender=state.sender)
        return JSONResponse(content=result.to_dict(), status_code=200 if result.ok else 500)

    return app
