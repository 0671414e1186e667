"""
SMS OTP Relay - Main Application Entry Point

Polls an SMS-gateway dashboard for incoming messages, extracts OTP codes
and relays them to subscribed Telegram chats. Built on FastAPI, httpx,
APScheduler, SQLite and python-telegram-bot.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine

from otp_relay.api.telegram_webhook import router as telegram_router
from otp_relay.config.settings import Settings, get_settings
from otp_relay.domain.poll_state import PollState
from otp_relay.infrastructure.authenticator import Authenticator
from otp_relay.infrastructure.dashboard_http import DashboardHttp
from otp_relay.infrastructure.database import create_engine, create_session_factory, init_database
from otp_relay.infrastructure.message_fetcher import MessageFetcher
from otp_relay.infrastructure.scheduler import (
    get_scheduler,
    schedule_polling,
    start_scheduler,
    stop_scheduler,
)
from otp_relay.infrastructure.session_store import SessionStore
from otp_relay.infrastructure.state_store import StateStore
from otp_relay.infrastructure.subscriber_repository import SubscriberRepository
from otp_relay.infrastructure.telegram_notifier import TelegramNotifier
from otp_relay.usecases.admin_config import AdminConfigService
from otp_relay.usecases.poll_service import PollService

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging once at startup."""
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@dataclass
class Relay:
    """Components owned by the running process."""
    settings: Settings
    engine: AsyncEngine
    session_store: SessionStore
    subscribers: SubscriberRepository
    notifier: TelegramNotifier
    state: PollState
    state_store: StateStore
    poll_service: PollService
    admin: AdminConfigService


def build_relay(settings: Settings, transport=None, bot=None) -> Relay:
    """Wire up all components from settings."""
    engine = create_engine(settings)
    subscribers = SubscriberRepository(create_session_factory(engine))

    env_file = settings.env_file_path if settings.persist_env_changes else None
    session_store = SessionStore(initial_cookie=settings.session_cookie, env_file=env_file)
    http = DashboardHttp(settings, transport=transport)
    authenticator = Authenticator(settings, http, session_store)
    fetcher = MessageFetcher(settings, http, session_store, authenticator)

    state_store = StateStore(settings.state_path)
    state = state_store.load(capacity=settings.max_cache_size)

    notifier = TelegramNotifier(settings, subscribers, bot=bot, layout=state.layout)

    poll_service = PollService(settings, fetcher, notifier, state, state_store)
    admin = AdminConfigService(settings, state, state_store, env_file=env_file)

    return Relay(
        settings=settings,
        engine=engine,
        session_store=session_store,
        subscribers=subscribers,
        notifier=notifier,
        state=state,
        state_store=state_store,
        poll_service=poll_service,
        admin=admin,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    settings = get_settings()
    configure_logging(settings)

    # Startup
    logger.info("Starting SMS OTP Relay...")
    relay = build_relay(settings)
    app.state.relay = relay

    logger.info("Initializing database...")
    await init_database(relay.engine)
    logger.info("Database initialized")

    # A bot or webhook that cannot start is fatal: lifespan fails and the process exits
    await relay.notifier.start()

    await relay.poll_service.establish_baseline()

    logger.info("Starting scheduler...")
    get_scheduler(settings.dashboard_timezone)
    schedule_polling(relay.poll_service, settings.poll_interval_seconds)
    await start_scheduler()

    stats = await relay.subscribers.stats()
    logger.info("Application startup complete!")
    logger.info(f"Poll interval: {settings.poll_interval_seconds}s")
    logger.info(f"Users: {stats.users} | Groups: {stats.groups}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await stop_scheduler()
    await relay.poll_service.wait_until_idle()
    await relay.notifier.stop()
    await relay.engine.dispose()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="SMS OTP Relay",
    description="Relays OTP codes from an SMS dashboard to Telegram chats",
    version="1.0.0",
    lifespan=lifespan
)

# Register routers
app.include_router(telegram_router, tags=["Telegram"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "SMS OTP Relay",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "webhook": "/webhook/telegram",
            "health": "/health",
            "poller": "/poller/status"
        }
    }


@app.get("/poller/status")
async def poller_status():
    """Get poller status and scheduled jobs."""
    relay: Optional[Relay] = getattr(app.state, "relay", None)
    scheduler = get_scheduler()

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if job.next_run_time else None
        })

    status = {
        "running": scheduler.running,
        "jobs_count": len(jobs),
        "jobs": jobs
    }

    if relay is not None:
        status.update({
            "polling": relay.poll_service.is_polling,
            "last_seen_timestamp": relay.state.last_seen_timestamp,
            "cached_fingerprints": len(relay.state.recent_fingerprints),
            "last_checked_at": str(relay.state.last_checked_at) if relay.state.last_checked_at else None,
        })

    return status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "otp_relay.main:app",
        host="0.0.0.0",
        port=8000,
        reload=get_settings().debug
    )
