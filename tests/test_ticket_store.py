"""
Tests de la máquina de estados del store de tickets
"""
import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import update

from shared.database.models import Ticket
from services.ticket_scan.models.scan import ScanResult
from services.ticket_scan.models.ticket import Coupon, ScanActor, UsedTicket, ValidTicket
from services.ticket_scan.services.ticket_numbers import validate_ticket_number_format
from services.ticket_scan.services.ticket_store import (
    NOT_FOUND,
    VENDOR_MISMATCH,
    InconsistentTicketError,
    TicketNotFoundError,
    TicketStore,
)
from tests.helpers import ADMIN_ID, FIXED_NOW, OTHER_VENDOR_ID, PLAYER_ID, VENDOR_ID

VENDOR = ScanActor(kind="vendor", user_id=VENDOR_ID)
PLAYER = ScanActor(kind="player", user_id=PLAYER_ID)


async def set_columns(session_maker, ticket_id, **values):
    async with session_maker() as session:
        await session.execute(update(Ticket).where(Ticket.id == ticket_id).values(**values))
        await session.commit()


class TestIssue:
    """Tests de emisión de tickets"""

    async def test_issue_creates_valid_ticket(self, valid_ticket):
        """Ticket nuevo parte valid y con número impreso"""
        assert isinstance(valid_ticket, ValidTicket)
        assert valid_ticket.status == "valid"
        assert valid_ticket.vendor_id == VENDOR_ID
        assert valid_ticket.price == Decimal("10.00")
        assert valid_ticket.ticket_number is not None

    async def test_issue_with_coupon(self, db_session, clock):
        store = TicketStore(db_session, clock=clock)
        ticket = await store.issue(
            user_id=PLAYER_ID,
            vendor_id=VENDOR_ID,
            game_id="game_1",
            coupon=Coupon(code="SAVE10", discount_percent=10, shop_name="Shop"),
        )
        assert ticket.coupon is not None
        assert ticket.coupon.code == "SAVE10"
        assert ticket.coupon.used is False

    async def test_get_or_raise_missing(self, db_session):
        with pytest.raises(TicketNotFoundError):
            await TicketStore(db_session).get_or_raise("MISSING")

    async def test_find_by_number(self, db_session, valid_ticket):
        """Búsqueda por número impreso y por id"""
        store = TicketStore(db_session)
        by_printed = await store.find_by_number(validate_ticket_number_format(valid_ticket.ticket_number))
        by_id = await store.find_by_number(validate_ticket_number_format(valid_ticket.id))
        assert [t.id for t in by_printed] == [valid_ticket.id]
        assert [t.id for t in by_id] == [valid_ticket.id]


class TestRedeem:
    """Tests de transiciones de estado al escanear"""

    async def test_vendor_redeems_valid_ticket(self, db_session, clock, valid_ticket):
        """valid -> used con el canje registrado"""
        result = await TicketStore(db_session, clock=clock).redeem(valid_ticket.id, VENDOR, "mobile")

        assert result.outcome == ScanResult.VALIDATED
        assert isinstance(result.ticket, UsedTicket)
        assert result.ticket.redemption.vendor_id == VENDOR_ID
        assert result.ticket.redemption.redeemed_at == FIXED_NOW
        assert result.ticket.redemption.device == "mobile"
        assert result.ticket.redemption.method == "qr"

    async def test_second_scan_is_already_used(self, db_session, clock, valid_ticket):
        """El canje se registra una vez y no se sobrescribe"""
        store = TicketStore(db_session, clock=clock)
        first = await store.redeem(valid_ticket.id, VENDOR, "mobile")

        clock.advance(minutes=5)
        second = await store.redeem(valid_ticket.id, VENDOR, "web")

        assert second.outcome == ScanResult.ALREADY_USED
        assert second.ticket.redemption == first.ticket.redemption

    async def test_concurrent_redeems_single_winner(self, session_maker, clock, valid_ticket):
        """N canjes concurrentes producen un solo VALIDATED"""

        async def attempt():
            async with session_maker() as session:
                return await TicketStore(session, clock=clock).redeem(valid_ticket.id, VENDOR, "mobile")

        results = await asyncio.gather(*(attempt() for _ in range(8)))
        outcomes = [r.outcome for r in results]

        assert outcomes.count(ScanResult.VALIDATED) == 1
        assert outcomes.count(ScanResult.ALREADY_USED) == 7

    async def test_vendor_mismatch_is_forbidden(self, db_session, clock, valid_ticket):
        """Otro vendedor no puede canjear y el ticket sigue valid"""
        store = TicketStore(db_session, clock=clock)
        other = ScanActor(kind="vendor", user_id=OTHER_VENDOR_ID)

        result = await store.redeem(valid_ticket.id, other, "mobile")

        assert result.outcome == ScanResult.INVALID
        assert result.reason == VENDOR_MISMATCH
        assert result.forbidden is True
        assert isinstance(await store.get(valid_ticket.id), ValidTicket)

    async def test_vendor_id_claim_must_match_caller(self, db_session, clock, valid_ticket):
        """Un usuario ajeno no puede usar el vendorId del emisor"""
        store = TicketStore(db_session, clock=clock)
        spoofed = ScanActor(kind="vendor", user_id=OTHER_VENDOR_ID, vendor_id=VENDOR_ID)

        result = await store.redeem(valid_ticket.id, spoofed, "mobile")

        assert result.forbidden is True

    async def test_admin_may_redeem_any_ticket(self, db_session, clock, valid_ticket):
        admin = ScanActor(kind="vendor", user_id=ADMIN_ID, elevated=True)
        result = await TicketStore(db_session, clock=clock).redeem(valid_ticket.id, admin, "web")
        assert result.outcome == ScanResult.VALIDATED
        assert result.ticket.redemption.vendor_id == ADMIN_ID

    async def test_player_scan_never_redeems(self, db_session, clock, valid_ticket):
        """Escaneo de jugador no canjea, solo actualiza last_scan"""
        store = TicketStore(db_session, clock=clock)

        first = await store.redeem(valid_ticket.id, PLAYER, "mobile")
        second = await store.redeem(valid_ticket.id, PLAYER, "mobile")

        assert first.outcome == ScanResult.VALID
        assert second.outcome == ScanResult.VALID
        assert isinstance(second.ticket, ValidTicket)
        assert second.ticket.last_scan_by == "player"
        assert second.ticket.last_scan_at == FIXED_NOW

    async def test_player_scan_of_used_ticket(self, db_session, clock, valid_ticket):
        store = TicketStore(db_session, clock=clock)
        await store.redeem(valid_ticket.id, VENDOR, "mobile")
        result = await store.redeem(valid_ticket.id, PLAYER, "mobile")
        assert result.outcome == ScanResult.ALREADY_USED

    async def test_expired_status(self, session_maker, db_session, clock, valid_ticket):
        await set_columns(session_maker, valid_ticket.id, status="expired")
        result = await TicketStore(db_session, clock=clock).redeem(valid_ticket.id, VENDOR, "mobile")
        assert result.outcome == ScanResult.EXPIRED

    async def test_past_expiry_reports_expired(self, session_maker, db_session, clock, valid_ticket):
        """expires_at vencido bloquea el canje sin reescribir el status"""
        await set_columns(session_maker, valid_ticket.id, expires_at=FIXED_NOW - timedelta(hours=1))
        store = TicketStore(db_session, clock=clock)

        result = await store.redeem(valid_ticket.id, VENDOR, "mobile")

        assert result.outcome == ScanResult.EXPIRED
        assert (await store.get(valid_ticket.id)).status == "valid"

    async def test_future_expiry_still_redeemable(self, session_maker, db_session, clock, valid_ticket):
        await set_columns(session_maker, valid_ticket.id, expires_at=FIXED_NOW + timedelta(hours=1))
        result = await TicketStore(db_session, clock=clock).redeem(valid_ticket.id, VENDOR, "mobile")
        assert result.outcome == ScanResult.VALIDATED

    async def test_missing_ticket_is_invalid(self, db_session, clock):
        result = await TicketStore(db_session, clock=clock).redeem("MISSING", VENDOR, "mobile")
        assert result.outcome == ScanResult.INVALID
        assert result.reason == NOT_FOUND
        assert result.forbidden is False

    async def test_empty_ticket_id_raises(self, db_session):
        with pytest.raises(ValueError):
            await TicketStore(db_session).redeem("", VENDOR, "mobile")

    async def test_used_without_redemption_is_inconsistent(self, session_maker, db_session, valid_ticket):
        """Fila used sin registro de canje se rechaza"""
        await set_columns(session_maker, valid_ticket.id, status="used")
        with pytest.raises(InconsistentTicketError):
            await TicketStore(db_session).get(valid_ticket.id)

    async def test_unknown_status_is_inconsistent(self, session_maker, db_session, valid_ticket):
        await set_columns(session_maker, valid_ticket.id, status="refunded")
        with pytest.raises(InconsistentTicketError):
            await TicketStore(db_session).get(valid_ticket.id)
