"""Modelos Pydantic para escaneo y validación de tickets"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional


class ScanResult(str, Enum):
    VALIDATED = "VALIDATED"  # Vendedor canjeó el ticket
    VALID = "VALID"  # Jugador verificó, ticket utilizable
    ALREADY_USED = "ALREADY_USED"
    EXPIRED = "EXPIRED"
    INVALID = "INVALID"


RESULT_MESSAGES = {
    ScanResult.VALIDATED: "Ticket redeemed successfully",
    ScanResult.VALID: "Ticket is valid",
    ScanResult.ALREADY_USED: "Ticket has already been used",
    ScanResult.EXPIRED: "Ticket has expired",
    ScanResult.INVALID: "Invalid ticket",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScanRequest(_CamelModel):
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    qr_data: Optional[str] = Field(default=None, alias="qrData")  # QRPayload serializado
    signature: Optional[str] = None  # HMAC sobre qrData
    scanned_by: Literal["player", "vendor"] = Field(alias="scannedBy")
    vendor_id: Optional[str] = Field(default=None, alias="vendorId")
    device: Literal["web", "mobile"]
    app_version: Optional[str] = Field(default=None, alias="appVersion")


class ManualValidationRequest(_CamelModel):
    ticket_number: str = Field(alias="ticketNumber")
    scanned_by: Literal["player", "vendor"] = Field(alias="scannedBy")
    vendor_id: Optional[str] = Field(default=None, alias="vendorId")
    device: Literal["web", "mobile"]
    app_version: Optional[str] = Field(default=None, alias="appVersion")


class CouponData(_CamelModel):
    code: str
    description: Optional[str] = None
    discount_percent: Optional[int] = Field(default=None, alias="discountPercent")
    shop_name: Optional[str] = Field(default=None, alias="shopName")


class ScanResponse(_CamelModel):
    success: bool
    result: ScanResult
    message: str
    ticket_id: Optional[str] = Field(default=None, alias="ticketId")
    coupon: Optional[CouponData] = None  # Solo con result = VALID y cupón sin usar


class TicketQRResponse(_CamelModel):
    ticket_id: str = Field(alias="ticketId")
    qr_data: str = Field(alias="qrData")
    signature: str
    issued_at: int = Field(alias="issuedAt")
