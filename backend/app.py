"""
FastAPI application for the PR watchdog.

Wires the state store, lifecycle state machine, alert engine and scheduler
together. The scan loops start with the application (lifespan) unless
ENABLE_SCHEDULER=false.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from models.config_models import Config
from alerts.dispatcher import AlertDispatcher
from alerts.engine import AlertEngine
from alerts.scheduler import AlertScheduler
from alerts.slack import SlackWebhookSink
from backend.routes import router
from storage.base import PullRequestStore
from storage.factory import build_store
from utils.config_loader import load_config
from utils.logger import setup_logger
from webhooks.lifecycle import PullRequestLifecycle

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    store: Optional[PullRequestStore] = None,
    sink: Optional[SlackWebhookSink] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Args:
        config: Validated config (default: load from environment / .env)
        store: State store (default: built from config)
        sink: Alert sink (default: SlackWebhookSink)

    Returns:
        FastAPI application with its services on `app.state`
    """
    config = config or load_config()
    setup_logger(config.log_level)
    store = store or build_store(config.credentials)

    dispatcher = AlertDispatcher(pacing_seconds=config.alerts.dispatch_pacing_seconds)
    engine = AlertEngine(
        store=store,
        dispatcher=dispatcher,
        sink=sink or SlackWebhookSink(),
        config=config.alerts,
        default_webhook_url=config.credentials.slack_webhook_url,
    )
    scheduler = AlertScheduler(
        engine,
        scan_interval=config.alerts.scan_interval_seconds,
        stalled_interval=config.alerts.stalled_interval_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.alerts.enable_scheduler:
            scheduler.start()
        yield
        await scheduler.stop()
        await dispatcher.close()
        store.close()

    app = FastAPI(
        title="PR Watchdog API",
        description="Tracks GitHub pull requests and alerts teams about stale, unreviewed and stalled PRs",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.store = store
    app.state.lifecycle = PullRequestLifecycle(store)
    app.state.dispatcher = dispatcher
    app.state.engine = engine
    app.state.scheduler = scheduler

    app.include_router(router)

    logger.info(f"FastAPI app initialized (store={store.backend_name})")
    return app
