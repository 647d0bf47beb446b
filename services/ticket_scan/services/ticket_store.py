"""
Store de tickets y máquina de estados de canje

    valid --(vendedor autorizado)--> used      (terminal)
    valid --(paso del tiempo/flag)--> expired  (terminal)

La transición valid -> used es un UPDATE condicional sobre el status actual
(compare-and-swap en la base de datos), así de N canjes concurrentes sobre
el mismo ticket solo uno afecta la fila; el resto observa ALREADY_USED.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional
import logging

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.database.models import Ticket, TicketCoupon
from shared.utils.clock import ensure_utc, utc_now
from services.ticket_scan.models.scan import ScanResult
from services.ticket_scan.models.ticket import (
    Coupon,
    ExpiredTicket,
    Redemption,
    ScanActor,
    TicketRecord,
    UsedTicket,
    ValidTicket,
)
from services.ticket_scan.services.ticket_numbers import (
    TicketNumberFormat,
    generate_formatted_number,
    generate_readable_number,
    generate_simple_number,
    generate_ticket_id,
    normalize_ticket_number,
)

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
VENDOR_MISMATCH = "vendor_mismatch"


class TicketNotFoundError(LookupError):
    """El ticket no existe"""


class InconsistentTicketError(RuntimeError):
    """La fila guardada no corresponde a ninguna variante de ticket"""


@dataclass(frozen=True)
class RedeemResult:
    outcome: ScanResult
    ticket: Optional[TicketRecord] = None
    reason: Optional[str] = None  # not_found, vendor_mismatch

    @property
    def forbidden(self) -> bool:
        return self.reason == VENDOR_MISMATCH


class TicketStore:
    """Único componente que modifica tickets"""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def _select(self):
        # populate_existing: releer la fila aunque esté en el identity map
        return (
            select(Ticket)
            .options(selectinload(Ticket.coupon))
            .execution_options(populate_existing=True)
        )

    async def get(self, ticket_id: str) -> Optional[TicketRecord]:
        result = await self.db.execute(self._select().where(Ticket.id == ticket_id))
        row = result.scalar_one_or_none()
        return to_domain(row) if row is not None else None

    async def get_or_raise(self, ticket_id: str) -> TicketRecord:
        ticket = await self.get(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def find_by_number(self, number: TicketNumberFormat, limit: int = 2) -> List[TicketRecord]:
        """
        Buscar tickets por número de ingreso manual

        Retorna hasta `limit` coincidencias para que el llamador detecte
        números ambiguos (el número simple de 6 dígitos puede repetirse).
        """
        if number.kind == "ticket-id":
            ticket = await self.get(number.normalized)
            return [ticket] if ticket else []

        if number.kind == "readable":
            column = Ticket.number_readable
        elif number.kind == "simple":
            column = Ticket.number_simple
        else:
            return []

        result = await self.db.execute(
            self._select().where(column == number.normalized).limit(limit)
        )
        return [to_domain(row) for row in result.scalars().all()]

    async def issue(
        self,
        user_id: str,
        vendor_id: str,
        game_id: str,
        price: Decimal = Decimal("0"),
        currency: str = "GHS",
        expires_at: Optional[datetime] = None,
        coupon: Optional[Coupon] = None,
        ticket_id: Optional[str] = None,
    ) -> ValidTicket:
        """Crear un ticket en estado valid (al confirmarse el pago)"""
        ticket_id = ticket_id or generate_ticket_id()
        now = self.clock()

        row = Ticket(
            id=ticket_id,
            user_id=user_id,
            vendor_id=vendor_id,
            game_id=game_id,
            price=price,
            currency=currency,
            ticket_number=generate_formatted_number(ticket_id),
            number_simple=generate_simple_number(ticket_id),
            number_readable=normalize_ticket_number(generate_readable_number(ticket_id, now.year)),
            status="valid",
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        if coupon is not None:
            row.coupon = TicketCoupon(
                code=coupon.code,
                description=coupon.description,
                discount_percent=coupon.discount_percent,
                shop_name=coupon.shop_name,
                used=coupon.used,
            )
        self.db.add(row)
        await self.db.commit()
        logger.info(f"Ticket {ticket_id} emitido (vendor={vendor_id}, game={game_id})")

        return await self.get_or_raise(ticket_id)

    async def redeem(
        self,
        ticket_id: str,
        actor: ScanActor,
        device: str,
        method: str = "qr"
    ) -> RedeemResult:
        """
        Aplicar un escaneo al ticket

        Returns:
            RedeemResult con VALIDATED (canje de vendedor), VALID (chequeo de jugador),
            ALREADY_USED, EXPIRED o INVALID (no existe o vendedor no autorizado)
        """
        if not ticket_id:
            raise ValueError("ticket_id es requerido")

        now = self.clock()
        ticket = await self.get(ticket_id)
        if ticket is None:
            return RedeemResult(ScanResult.INVALID, reason=NOT_FOUND)

        terminal = _terminal_result(ticket, now)
        if terminal is not None:
            return terminal

        if actor.kind == "vendor":
            if not _vendor_may_redeem(ticket, actor):
                logger.warning(
                    f"Vendedor no autorizado para ticket {ticket_id} (user={actor.user_id})"
                )
                return RedeemResult(ScanResult.INVALID, ticket, reason=VENDOR_MISMATCH)
            return await self._mark_used(ticket, actor, device, method, now)

        return await self._touch_player_scan(ticket, now)

    async def _mark_used(
        self,
        ticket: ValidTicket,
        actor: ScanActor,
        device: str,
        method: str,
        now: datetime
    ) -> RedeemResult:
        stmt = (
            update(Ticket)
            .where(_still_redeemable(ticket.id, now))
            .values(
                status="used",
                last_scan_at=now,
                last_scan_by="vendor",
                redemption_vendor_id=actor.redeeming_vendor_id,
                redeemed_at=now,
                redemption_device=device,
                redemption_method=method,
                updated_at=now,
            )
            .returning(Ticket.id)
            .execution_options(synchronize_session=False)
        )
        updated_id = (await self.db.execute(stmt)).scalar_one_or_none()
        await self.db.commit()

        if updated_id is None:
            # Otro request ganó la carrera o el ticket expiró entre lectura y escritura
            return await self._reclassify(ticket.id, now)

        logger.info(
            f"Ticket {ticket.id} canjeado por vendor {actor.redeeming_vendor_id} ({device}, {method})"
        )
        # El canje ya está persistido, la respuesta se arma con lo escrito
        used = UsedTicket(
            **ticket.model_dump(exclude={"status", "last_scan_at", "last_scan_by"}),
            last_scan_at=now,
            last_scan_by="vendor",
            redemption=Redemption(
                vendor_id=actor.redeeming_vendor_id,
                redeemed_at=now,
                device=device,
                method=method,
            ),
        )
        return RedeemResult(ScanResult.VALIDATED, used)

    async def _touch_player_scan(self, ticket: ValidTicket, now: datetime) -> RedeemResult:
        stmt = (
            update(Ticket)
            .where(_still_redeemable(ticket.id, now))
            .values(last_scan_at=now, last_scan_by="player", updated_at=now)
            .returning(Ticket.id)
            .execution_options(synchronize_session=False)
        )
        updated_id = (await self.db.execute(stmt)).scalar_one_or_none()
        await self.db.commit()

        if updated_id is None:
            return await self._reclassify(ticket.id, now)
        touched = ticket.model_copy(update={"last_scan_at": now, "last_scan_by": "player"})
        return RedeemResult(ScanResult.VALID, touched)

    async def _reclassify(self, ticket_id: str, now: datetime) -> RedeemResult:
        current = await self.get(ticket_id)
        if current is None:
            return RedeemResult(ScanResult.INVALID, reason=NOT_FOUND)
        return _terminal_result(current, now) or RedeemResult(ScanResult.INVALID, current)


def _still_redeemable(ticket_id: str, now: datetime):
    return and_(
        Ticket.id == ticket_id,
        Ticket.status == "valid",
        or_(Ticket.expires_at.is_(None), Ticket.expires_at > now),
    )


def _terminal_result(ticket: TicketRecord, now: datetime) -> Optional[RedeemResult]:
    if isinstance(ticket, UsedTicket):
        return RedeemResult(ScanResult.ALREADY_USED, ticket)
    if isinstance(ticket, ExpiredTicket) or ticket.is_past_expiry(now):
        return RedeemResult(ScanResult.EXPIRED, ticket)
    return None


def _vendor_may_redeem(ticket: TicketRecord, actor: ScanActor) -> bool:
    if actor.elevated:
        return True
    # Toda identidad de vendedor presentada debe ser la del emisor
    presented = {actor.user_id}
    if actor.vendor_id:
        presented.add(actor.vendor_id)
    return presented == {ticket.vendor_id}


def to_domain(row: Ticket) -> TicketRecord:
    """Convertir una fila de tickets a su variante de dominio"""
    coupon = None
    if row.coupon is not None:
        coupon = Coupon(
            code=row.coupon.code,
            description=row.coupon.description,
            discount_percent=row.coupon.discount_percent,
            shop_name=row.coupon.shop_name,
            used=bool(row.coupon.used),
        )

    common = dict(
        id=row.id,
        user_id=row.user_id,
        vendor_id=row.vendor_id,
        game_id=row.game_id,
        price=row.price if row.price is not None else Decimal("0"),
        currency=row.currency,
        ticket_number=row.ticket_number,
        expires_at=ensure_utc(row.expires_at),
        last_scan_at=ensure_utc(row.last_scan_at),
        last_scan_by=row.last_scan_by,
        coupon=coupon,
    )

    if row.status == "valid":
        return ValidTicket(**common)
    if row.status == "expired":
        return ExpiredTicket(**common)
    if row.status == "used":
        if not row.redemption_vendor_id or row.redeemed_at is None:
            logger.error(f"Ticket {row.id} marcado como used sin registro de canje")
            raise InconsistentTicketError(f"Ticket {row.id} usado sin registro de canje")
        return UsedTicket(
            **common,
            redemption=Redemption(
                vendor_id=row.redemption_vendor_id,
                redeemed_at=ensure_utc(row.redeemed_at),
                device=row.redemption_device or "web",
                method=row.redemption_method or "qr",
            ),
        )

    raise InconsistentTicketError(f"Ticket {row.id} con estado desconocido: {row.status}")
