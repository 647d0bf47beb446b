"""Números de ticket para ingreso manual (derivados del ticket_id)"""
from dataclasses import dataclass
from typing import Optional
import hashlib
import re
import secrets

# Caracteres fáciles de leer y tipear (sin 0/O, 1/I)
READABLE_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TICKET_ID_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
TICKET_ID_LENGTH = 20

_READABLE = re.compile(r"^LT\d{4}[A-Z0-9]{6}$")
_SIMPLE = re.compile(r"^\d{6}$")
_TICKET_ID = re.compile(r"^[A-Z0-9]{15,30}$")


@dataclass(frozen=True)
class TicketNumberFormat:
    is_valid: bool
    kind: str  # readable, simple, ticket-id, invalid
    normalized: str


def generate_ticket_id() -> str:
    return "".join(secrets.choice(TICKET_ID_CHARS) for _ in range(TICKET_ID_LENGTH))


def _sha256_hex(ticket_id: str) -> str:
    return hashlib.sha256(ticket_id.encode("utf-8")).hexdigest()


def generate_readable_number(ticket_id: str, year: int) -> str:
    """Formato LT-YYYY-XXXXXX (ej: LT-2024-A3K7M9)"""
    digest = _sha256_hex(ticket_id)
    code = "".join(
        READABLE_CHARS[int(digest[i * 4:i * 4 + 4], 16) % len(READABLE_CHARS)]
        for i in range(6)
    )
    return f"LT-{year}-{code}"


def generate_simple_number(ticket_id: str) -> str:
    """Seis dígitos extraídos del hash del ticket_id (ej: 847392)"""
    digest = _sha256_hex(ticket_id)
    digits = ""
    index = 0
    while len(digits) < 6 and index < len(digest) - 1:
        byte = int(digest[index:index + 2], 16)
        if byte >= 10:
            digits += str((byte % 90) + 10)[-1]
        index += 2

    # Relleno determinista si el hash no alcanzó
    while len(digits) < 6:
        digits += str(int(digest[0:2], 16) % 10)
    return digits


def generate_formatted_number(ticket_id: str) -> str:
    """Número impreso en el ticket: 123-456"""
    simple = generate_simple_number(ticket_id)
    return f"{simple[:3]}-{simple[3:]}"


def normalize_ticket_number(value: str) -> str:
    return re.sub(r"[\s-]", "", value).upper().strip()


def validate_ticket_number_format(value: Optional[str]) -> TicketNumberFormat:
    if not isinstance(value, str) or not value.strip():
        return TicketNumberFormat(False, "invalid", "")

    normalized = normalize_ticket_number(value)

    if _READABLE.match(normalized):
        return TicketNumberFormat(True, "readable", normalized)
    if _SIMPLE.match(normalized):
        return TicketNumberFormat(True, "simple", normalized)
    if _TICKET_ID.match(normalized):
        return TicketNumberFormat(True, "ticket-id", normalized)

    return TicketNumberFormat(False, "invalid", normalized)
