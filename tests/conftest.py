"""
Pytest configuration and fixtures for SMS OTP Relay tests.
"""

import json
from datetime import datetime
from typing import AsyncGenerator
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from otp_relay.config.settings import Settings
from otp_relay.domain.message import RawMessage
from otp_relay.domain.subscriber import Base
from otp_relay.infrastructure.dashboard_http import DashboardResponse


# Use a separate in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DASHBOARD_URL = "http://dashboard.test"
DATA_URL = f"{DASHBOARD_URL}/ints/client/res/data_smscdr.php"
TEST_BOT_TOKEN = "123456:ABC-DEF"

# Fixed "now" used by clock-dependent tests
NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=ZoneInfo("UTC"))


def make_row(timestamp: str, body: str, phone: str = "447400123456") -> list:
    """One dashboard table row: date, range, number, CLI, SMS, currency, payout."""
    return [timestamp, "United Kingdom", phone, "WhatsApp", body, "$", 0.01]


def make_message(timestamp: str, body: str, phone: str = "447400123456") -> RawMessage:
    return RawMessage(timestamp=timestamp, phone=phone, body=body, sender="WhatsApp")


def data_response(rows: list, status_code: int = 200) -> DashboardResponse:
    """A dashboard response carrying the given table rows."""
    return DashboardResponse(
        status_code=status_code,
        text=json.dumps({"sEcho": 1, "iTotalRecords": len(rows), "aaData": rows}),
        url=DATA_URL,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings isolated from the environment's .env file."""
    return Settings(
        dashboard_base_url=DASHBOARD_URL,
        login_username="relay",
        login_password="secret",
        telegram_bot_token=TEST_BOT_TOKEN,
        retry_delay_seconds=0,
        persist_env_changes=False,
        data_dir=str(tmp_path),
        _env_file=None,
    )


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker:
    """Session factory bound to the test engine."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def sample_rows() -> list:
    """Dashboard rows newest first, as the table endpoint returns them."""
    return [
        make_row("2025-01-01 11:59:10", "Telegram code 55123. Do not give this code to anyone"),
        make_row("2025-01-01 11:58:00", "Your verification code: 482913", phone="593985987705"),
        ["0,0,0,2", 0, 0, 0, 0, 0, 0],
    ]
