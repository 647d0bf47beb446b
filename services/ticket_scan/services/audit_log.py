"""Registro append-only de escaneos (ScanEvent)"""
from datetime import datetime
from typing import Callable, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from shared.database.models import ScanEvent
from shared.utils.clock import utc_now
from services.ticket_scan.models.scan import ScanResult

logger = logging.getLogger(__name__)


class AuditLog:
    """Escribe un ScanEvent por request. Nunca actualiza ni borra"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    async def record(
        self,
        *,
        ticket_id: Optional[str],
        scanned_by: str,
        user_id: str,
        vendor_id: Optional[str],
        device: str,
        app_version: Optional[str],
        method: str,
        result: ScanResult,
        ip: Optional[str],
    ) -> ScanEvent:
        event = ScanEvent(
            ticket_id=ticket_id or None,
            scanned_by=scanned_by,
            user_id=user_id,
            vendor_id=vendor_id,
            device=device,
            app_version=app_version,
            method=method,
            result=result.value,
            ip=ip,
            created_at=self.clock(),
        )
        self.db.add(event)
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return event
