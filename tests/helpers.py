"""Constantes y utilidades compartidas por los tests"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.auth.jwt_handler import create_access_token

TEST_QR_SECRET = "test-qr-secret"
TEST_JWT_SECRET = "test-jwt-secret"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

PLAYER_ID = "player_123"
VENDOR_ID = "vendor_abc"
OTHER_VENDOR_ID = "vendor_xyz"
ADMIN_ID = "admin_001"


class FakeClock:
    """Reloj controlable para tests de frescura y expiración"""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


def caller(user_id: str, role: str) -> dict:
    return {"user_id": user_id, "email": None, "role": role}


def bearer(user_id: str, role: str, settings, expires: Optional[timedelta] = None) -> dict:
    token = create_access_token({"sub": user_id, "role": role}, expires_delta=expires, settings=settings)
    return {"Authorization": f"Bearer {token}"}


def run(coro):
    """Ejecutar una corrutina desde un test sync (TestClient)"""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()
