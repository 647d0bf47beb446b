"""
Servicio de escaneo de tickets

Orden dentro de un request:
    deserializar QR -> validar hash/frescura -> validar HMAC -> leer ticket
    -> autorizar -> mutar (si aplica) -> registrar ScanEvent

La fase de validación es pura (QRCodec, PayloadValidator, SignatureEngine).
La fase con efectos (TicketStore, AuditLog) comparte la sesión del request.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from shared.utils.clock import to_epoch_ms, utc_now
from services.ticket_scan.models.scan import (
    RESULT_MESSAGES,
    CouponData,
    ManualValidationRequest,
    ScanRequest,
    ScanResponse,
    ScanResult,
    TicketQRResponse,
)
from services.ticket_scan.models.ticket import ScanActor, TicketRecord
from services.ticket_scan.services.audit_log import AuditLog
from services.ticket_scan.services.qr_codec import MAX_AGE_MS, PayloadValidator, QRCodec
from services.ticket_scan.services.signature import SignatureEngine, SignatureFormatError
from services.ticket_scan.services.ticket_numbers import validate_ticket_number_format
from services.ticket_scan.services.ticket_store import RedeemResult, TicketStore

logger = logging.getLogger(__name__)

MSG_INVALID_QR_FORMAT = "Invalid QR code format"
MSG_QR_VALIDATION_FAILED = "QR code validation failed"
MSG_INVALID_SIGNATURE = "Invalid signature"
MSG_NO_TICKET_ID = "No ticket ID provided"
MSG_VENDOR_NOT_AUTHORIZED = "Vendor not authorized to scan this ticket"
MSG_INVALID_TICKET_NUMBER = (
    "Invalid ticket number format. Please enter a valid ticket number "
    "(e.g., 123-456 or LT-2024-ABC123)"
)
MSG_AMBIGUOUS_NUMBER = "Ticket number is ambiguous, scan the QR code instead"
MSG_INTERNAL_ERROR = "Internal server error"


@dataclass
class ScanOutcome:
    response: ScanResponse
    status_code: int = 200


def _rejected(message: str, status_code: int = 400) -> ScanOutcome:
    return ScanOutcome(
        ScanResponse(success=False, result=ScanResult.INVALID, message=message),
        status_code,
    )


def build_actor(scanned_by: str, vendor_id: Optional[str], caller: Dict) -> ScanActor:
    """Construir el actor del escaneo a partir del usuario autenticado"""
    return ScanActor(
        kind=scanned_by,
        user_id=caller["user_id"],
        vendor_id=vendor_id if scanned_by == "vendor" else None,
        elevated=caller.get("role") == "admin",
    )


def _may_view_ticket(ticket: TicketRecord, caller: Dict) -> bool:
    role = caller.get("role")
    if role == "admin":
        return True
    if role == "vendor" and ticket.vendor_id == caller["user_id"]:
        return True
    return ticket.user_id == caller["user_id"]


class ScanService:
    """Orquesta validación, canje y auditoría de un escaneo"""

    def __init__(
        self,
        db: AsyncSession,
        engine: SignatureEngine,
        max_age_ms: int = MAX_AGE_MS,
        clock: Callable[[], datetime] = utc_now
    ):
        self.db = db
        self.engine = engine
        self.clock = clock
        epoch_clock = lambda: to_epoch_ms(self.clock())  # noqa: E731
        self.codec = QRCodec(engine, clock=epoch_clock)
        self.validator = PayloadValidator(engine, max_age_ms=max_age_ms, clock=epoch_clock)
        self.store = TicketStore(db, clock=clock)
        self.audit = AuditLog(db, clock=clock)

    def resolve_ticket_id(self, request: ScanRequest) -> Tuple[Optional[str], Optional[ScanOutcome]]:
        """
        Fase pura: obtener el ticket_id del request

        Returns:
            (ticket_id, None) si el request es aceptable,
            (ticket_id o None, rechazo) si no lo es
        """
        ticket_id = request.ticket_id or None

        if request.qr_data and not ticket_id:
            payload = self.codec.deserialize(request.qr_data)
            if payload is None:
                return None, _rejected(MSG_INVALID_QR_FORMAT)
            if not self.validator.validate(payload):
                return payload.ticket_id, _rejected(MSG_QR_VALIDATION_FAILED)
            ticket_id = payload.ticket_id

        # El HMAC se verifica aparte del hash, ambos deben pasar
        if request.signature and request.qr_data:
            try:
                signature_ok = self.engine.verify_hmac(request.qr_data, request.signature)
            except SignatureFormatError as e:
                logger.warning(f"Firma mal formada en escaneo: {e}")
                signature_ok = False
            if not signature_ok:
                logger.warning(f"Firma HMAC inválida para ticket {ticket_id}")
                return ticket_id, _rejected(MSG_INVALID_SIGNATURE)

        if not ticket_id:
            return None, _rejected(MSG_NO_TICKET_ID)

        return ticket_id, None

    async def scan(self, request: ScanRequest, caller: Dict, ip: Optional[str]) -> ScanOutcome:
        """Procesar un escaneo por ticketId o por QR (+ firma opcional)"""
        actor = build_actor(request.scanned_by, request.vendor_id, caller)
        method = "id" if request.ticket_id else "qr"

        ticket_id, rejection = self.resolve_ticket_id(request)
        if rejection is not None:
            outcome = rejection
        else:
            outcome = await self._redeem(ticket_id, actor, request.device, method)

        await self._record(ticket_id, actor, request.device, request.app_version, method, outcome, ip)
        return outcome

    async def validate_manual(
        self,
        request: ManualValidationRequest,
        caller: Dict,
        ip: Optional[str]
    ) -> ScanOutcome:
        """Validar un ticket por número ingresado a mano"""
        actor = build_actor(request.scanned_by, request.vendor_id, caller)
        number = validate_ticket_number_format(request.ticket_number)
        ticket_id = None

        if not number.is_valid:
            outcome = _rejected(MSG_INVALID_TICKET_NUMBER)
        else:
            try:
                matches = await self.store.find_by_number(number)
            except Exception as e:
                outcome = await self._internal_error(None, e)
            else:
                if len(matches) > 1:
                    logger.warning(f"Número de ticket ambiguo: {number.normalized}")
                    outcome = _rejected(MSG_AMBIGUOUS_NUMBER, status_code=200)
                elif not matches:
                    outcome = self._compose(None, RedeemResult(ScanResult.INVALID))
                else:
                    ticket_id = matches[0].id
                    outcome = await self._redeem(ticket_id, actor, request.device, "manual")

        await self._record(ticket_id, actor, request.device, request.app_version, "manual", outcome, ip)
        return outcome

    async def issue_qr(self, ticket_id: str, caller: Dict) -> TicketQRResponse:
        """
        Generar el QR firmado de un ticket para mostrarlo en pantalla

        Raises:
            TicketNotFoundError: si el ticket no existe
            PermissionError: si el usuario no es dueño, vendedor emisor ni admin
        """
        ticket = await self.store.get_or_raise(ticket_id)
        if not _may_view_ticket(ticket, caller):
            raise PermissionError("No puedes ver el QR de tickets de otros usuarios")

        payload = self.codec.encode(ticket.id)
        qr_data = self.codec.serialize(payload)
        return TicketQRResponse(
            ticket_id=ticket.id,
            qr_data=qr_data,
            signature=self.engine.hmac_sign(qr_data),
            issued_at=payload.issued_at,
        )

    async def _redeem(self, ticket_id: str, actor: ScanActor, device: str, method: str) -> ScanOutcome:
        try:
            result = await self.store.redeem(ticket_id, actor, device, method)
        except Exception as e:
            return await self._internal_error(ticket_id, e)
        return self._compose(ticket_id, result)

    async def _internal_error(self, ticket_id: Optional[str], error: Exception) -> ScanOutcome:
        logger.error(f"Error procesando escaneo de ticket {ticket_id}: {error}", exc_info=True)
        try:
            await self.db.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback falló: {rollback_error}")
        return ScanOutcome(
            ScanResponse(
                success=False,
                result=ScanResult.INVALID,
                message=MSG_INTERNAL_ERROR,
                ticket_id=ticket_id,
            ),
            500,
        )

    def _compose(self, ticket_id: Optional[str], result: RedeemResult) -> ScanOutcome:
        if result.forbidden:
            return ScanOutcome(
                ScanResponse(
                    success=False,
                    result=ScanResult.INVALID,
                    message=MSG_VENDOR_NOT_AUTHORIZED,
                    ticket_id=ticket_id,
                ),
                403,
            )

        coupon = None
        if result.outcome == ScanResult.VALID and result.ticket is not None:
            attached = result.ticket.coupon
            if attached is not None and not attached.used:
                coupon = CouponData(
                    code=attached.code,
                    description=attached.description,
                    discount_percent=attached.discount_percent,
                    shop_name=attached.shop_name,
                )

        return ScanOutcome(
            ScanResponse(
                success=result.outcome in (ScanResult.VALIDATED, ScanResult.VALID),
                result=result.outcome,
                message=RESULT_MESSAGES[result.outcome],
                ticket_id=ticket_id,
                coupon=coupon,
            )
        )

    async def _record(
        self,
        ticket_id: Optional[str],
        actor: ScanActor,
        device: str,
        app_version: Optional[str],
        method: str,
        outcome: ScanOutcome,
        ip: Optional[str]
    ):
        """Registrar el ScanEvent. Un fallo aquí no cambia la respuesta ya decidida"""
        try:
            await self.audit.record(
                ticket_id=ticket_id,
                scanned_by=actor.kind,
                user_id=actor.user_id,
                vendor_id=actor.redeeming_vendor_id if actor.kind == "vendor" else None,
                device=device,
                app_version=app_version,
                method=method,
                result=outcome.response.result,
                ip=ip,
            )
        except Exception as e:
            logger.error(f"No se pudo registrar ScanEvent para ticket {ticket_id}: {e}", exc_info=True)
