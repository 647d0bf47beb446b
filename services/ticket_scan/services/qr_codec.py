"""Payload firmado de los códigos QR: construcción, (de)serialización y validación"""
from typing import Callable, Literal, Optional
import logging

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from services.ticket_scan.services.signature import SignatureEngine
from shared.utils.clock import now_ms

logger = logging.getLogger(__name__)

MAX_AGE_MS = 24 * 60 * 60 * 1000  # 24 horas


class QRPayload(BaseModel):
    """Token embebido en el QR: {"ticketId", "hash", "issuedAt", "deviceType"?}"""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    ticket_id: StrictStr = Field(alias="ticketId", min_length=1)
    hash: StrictStr = Field(pattern=r"^[0-9a-f]{64}$")
    issued_at: StrictInt = Field(alias="issuedAt", gt=0)  # epoch en milisegundos
    device_type: Optional[Literal["web", "mobile"]] = Field(default=None, alias="deviceType")


class QRCodec:
    """Construye y parsea payloads de QR. Sin efectos salvo leer el reloj en encode()"""

    def __init__(self, engine: SignatureEngine, clock: Callable[[], int] = now_ms):
        self.engine = engine
        self.clock = clock

    def encode(self, ticket_id: str, device_type: Optional[str] = None) -> QRPayload:
        issued_at = self.clock()
        return QRPayload(
            ticket_id=ticket_id,
            hash=self.engine.hash(ticket_id, issued_at),
            issued_at=issued_at,
            device_type=device_type,
        )

    @staticmethod
    def serialize(payload: QRPayload) -> str:
        return payload.model_dump_json(by_alias=True, exclude_none=True)

    @staticmethod
    def deserialize(qr_data: str) -> Optional[QRPayload]:
        """Parsear el texto del QR. Retorna None si el JSON o los campos son inválidos"""
        try:
            return QRPayload.model_validate_json(qr_data)
        except (ValidationError, TypeError) as e:
            logger.warning(f"QR con formato inválido: {type(e).__name__}")
            return None


class PayloadValidator:
    """Verifica integridad (hash) y frescura (edad máxima) de un payload"""

    def __init__(
        self,
        engine: SignatureEngine,
        max_age_ms: int = MAX_AGE_MS,
        clock: Callable[[], int] = now_ms
    ):
        self.engine = engine
        self.max_age_ms = max_age_ms
        self.clock = clock

    def validate(self, payload: QRPayload) -> bool:
        if not self.engine.verify_hash(payload.ticket_id, payload.issued_at, payload.hash):
            logger.warning(f"Hash de QR no coincide para ticket {payload.ticket_id}")
            return False

        age = self.clock() - payload.issued_at
        if age > self.max_age_ms:
            logger.warning(f"QR expirado para ticket {payload.ticket_id} (edad {age} ms)")
            return False

        return True
