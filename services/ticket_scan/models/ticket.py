"""
Modelo de dominio del ticket

Un ticket es una variante por estado: el registro de canje solo existe
en UsedTicket, así no puede haber "canje presente con status valid".
"""
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict


class Redemption(BaseModel):
    model_config = ConfigDict(frozen=True)

    vendor_id: str
    redeemed_at: datetime
    device: str
    method: str = "qr"


class Coupon(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    description: Optional[str] = None
    discount_percent: Optional[int] = None
    shop_name: Optional[str] = None
    used: bool = False


class ScanActor(BaseModel):
    """Quién escanea: jugador o vendedor, resuelto desde el usuario autenticado"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["player", "vendor"]
    user_id: str
    vendor_id: Optional[str] = None  # vendorId presentado en el request
    elevated: bool = False  # admin

    @property
    def redeeming_vendor_id(self) -> str:
        return self.vendor_id or self.user_id


class _TicketBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    vendor_id: str
    game_id: str
    price: Decimal = Decimal("0")
    currency: str = "GHS"
    ticket_number: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None
    last_scan_by: Optional[str] = None
    coupon: Optional[Coupon] = None

    def is_past_expiry(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class ValidTicket(_TicketBase):
    status: Literal["valid"] = "valid"


class UsedTicket(_TicketBase):
    status: Literal["used"] = "used"
    redemption: Redemption


class ExpiredTicket(_TicketBase):
    status: Literal["expired"] = "expired"


TicketRecord = Union[ValidTicket, UsedTicket, ExpiredTicket]
