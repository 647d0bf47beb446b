# tests/conftest.py

import os

# El limiter se construye al importar, usar memoria y deshabilitarlo en tests
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from decimal import Decimal

import pytest

from shared.config import Settings
from shared.database.connection import build_engine, build_session_maker, create_tables
from shared.utils.rate_limiter import limiter
from services.ticket_scan.services.signature import SignatureEngine
from services.ticket_scan.services.ticket_store import TicketStore
from tests.helpers import PLAYER_ID, TEST_JWT_SECRET, TEST_QR_SECRET, VENDOR_ID, FakeClock, run

limiter.enabled = False


@pytest.fixture
def app_settings():
    return Settings(
        QR_SECRET_KEY=TEST_QR_SECRET,
        JWT_SECRET_KEY=TEST_JWT_SECRET,
        DATABASE_URL="sqlite:///:memory:",
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def signature_engine():
    return SignatureEngine(TEST_QR_SECRET)


@pytest.fixture
def clock():
    return FakeClock()


# --- Base de datos SQLite por test ---
@pytest.fixture
async def db_engine(tmp_path, app_settings):
    engine = build_engine(f"sqlite:///{tmp_path / 'tickets.db'}", app_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return build_session_maker(db_engine)


@pytest.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def valid_ticket(session_maker, clock):
    """Ticket valid emitido por VENDOR_ID para PLAYER_ID"""
    async with session_maker() as session:
        return await TicketStore(session, clock=clock).issue(
            user_id=PLAYER_ID,
            vendor_id=VENDOR_ID,
            game_id="game_1",
            price=Decimal("10.00"),
            currency="GHS",
        )


@pytest.fixture
def sync_session_maker(tmp_path, app_settings):
    """Session maker para tests con TestClient (loop propio del cliente)"""
    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}", app_settings)
    run(create_tables(engine))
    yield build_session_maker(engine)
    run(engine.dispose())
