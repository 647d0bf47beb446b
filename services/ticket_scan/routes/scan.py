"""Rutas de escaneo y validación de tickets"""
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Dict
import logging

from shared.auth.dependencies import get_current_user
from shared.config import DEFAULT_QR_SECRET, Settings, get_settings
from shared.database.session import get_db
from shared.utils.rate_limiter import RATE_LIMITS, get_real_client_ip, limiter
from services.ticket_scan.models.scan import (
    ManualValidationRequest,
    ScanRequest,
    ScanResponse,
    ScanResult,
    TicketQRResponse,
)
from services.ticket_scan.services.scan_service import ScanOutcome, ScanService
from services.ticket_scan.services.signature import SignatureEngine
from services.ticket_scan.services.ticket_store import TicketNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()


def get_signature_engine(settings: Settings = Depends(get_settings)) -> SignatureEngine:
    """Construir el motor de firmas con los secrets de la configuración"""
    if settings.QR_SECRET_KEY == DEFAULT_QR_SECRET and not settings.is_development:
        logger.warning("QR_SECRET_KEY usa el valor por defecto fuera de development")
    return SignatureEngine(settings.QR_SECRET_KEY, hmac_secret=settings.hmac_secret)


def get_scan_service(
    db: AsyncSession = Depends(get_db),
    engine: SignatureEngine = Depends(get_signature_engine),
    settings: Settings = Depends(get_settings)
) -> ScanService:
    return ScanService(db, engine, max_age_ms=settings.QR_MAX_AGE_MS)


def _to_json(outcome: ScanOutcome) -> JSONResponse:
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Body mal formado -> 400 con la forma uniforme de respuesta de escaneo"""
    logger.warning(f"Request inválido en {request.url.path}: {exc.errors()}")
    response = ScanResponse(success=False, result=ScanResult.INVALID, message="Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


@router.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
@limiter.limit(RATE_LIMITS["scan"])
async def scan_ticket(
    request: Request,  # Necesario para rate limiter
    scan_request: ScanRequest,
    current_user: Dict = Depends(get_current_user),
    service: ScanService = Depends(get_scan_service)
):
    """
    Escanear ticket por ticketId o por QR firmado

    Jugador: verifica el ticket sin canjearlo.
    Vendedor: canjea el ticket (valid -> used) si le pertenece.
    """
    outcome = await service.scan(scan_request, current_user, get_real_client_ip(request))
    return _to_json(outcome)


@router.post("/validate-manual", response_model=ScanResponse, response_model_exclude_none=True)
@limiter.limit(RATE_LIMITS["manual"])
async def validate_manual(
    request: Request,  # Necesario para rate limiter
    manual_request: ManualValidationRequest,
    current_user: Dict = Depends(get_current_user),
    service: ScanService = Depends(get_scan_service)
):
    """Validar ticket por número impreso (123-456, LT-2024-ABC123 o id)"""
    outcome = await service.validate_manual(manual_request, current_user, get_real_client_ip(request))
    return _to_json(outcome)


@router.get("/{ticket_id}/qr", response_model=TicketQRResponse)
@limiter.limit(RATE_LIMITS["qr"])
async def get_ticket_qr(
    request: Request,  # Necesario para rate limiter
    ticket_id: str,
    current_user: Dict = Depends(get_current_user),
    service: ScanService = Depends(get_scan_service)
):
    """
    Obtener QR firmado de un ticket (dueño, vendedor emisor o admin)

    El QR caduca según QR_MAX_AGE_MS, el cliente debe refrescarlo.
    """
    try:
        return await service.issue_qr(ticket_id, current_user)
    except TicketNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found"
        )
    except PermissionError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view this ticket"
        )
