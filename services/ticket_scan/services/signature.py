"""
Firmas de tickets: hash de integridad del QR y HMAC de requests

El hash de integridad (SHA-256) une ticket_id + issued_at + secret y viaja
dentro del payload del QR. El HMAC es una primitiva independiente que firma
el texto completo del QR enviado al endpoint de escaneo.

Todas las comparaciones son en tiempo constante (hmac.compare_digest).
"""
import base64
import binascii
import hashlib
import hmac
import re
from typing import Optional


DIGEST_HEX_LENGTH = 64
HMAC_SIGNATURE_LENGTH = 43  # base64url de 32 bytes sin padding

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


class SignatureFormatError(ValueError):
    """Digest o firma mal formados (longitud o codificación incorrecta)"""


class SignatureEngine:
    """Calcula y verifica el hash de integridad del QR y las firmas HMAC"""

    def __init__(self, secret: str, hmac_secret: Optional[str] = None):
        if not secret:
            raise ValueError("QR secret no puede estar vacío")
        self._secret = secret
        self._hmac_key = (hmac_secret or secret).encode("utf-8")

    def hash(self, ticket_id: str, issued_at: int) -> str:
        """
        Digest SHA-256 (hex) de ticket_id, issued_at y el secret.

        Mismos inputs producen siempre el mismo digest.
        """
        data = f"{ticket_id}:{issued_at}:{self._secret}"
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def verify_hash(self, ticket_id: str, issued_at: int, candidate: str) -> bool:
        """
        Verificar un digest recibido contra el esperado

        Raises:
            SignatureFormatError: si el candidato no es un hex SHA-256
        """
        if not isinstance(candidate, str) or not _HEX_DIGEST.match(candidate):
            raise SignatureFormatError("El digest debe ser SHA-256 en hexadecimal (64 caracteres)")

        expected = self.hash(ticket_id, issued_at)
        return hmac.compare_digest(candidate.encode("ascii"), expected.encode("ascii"))

    def hmac_sign(self, data: str) -> str:
        """Firma HMAC-SHA256 de data, codificada en base64url sin padding"""
        mac = hmac.new(self._hmac_key, data.encode("utf-8"), hashlib.sha256).digest()
        return base64.urlsafe_b64encode(mac).rstrip(b"=").decode("ascii")

    def verify_hmac(self, data: str, signature: str) -> bool:
        """
        Verificar una firma HMAC sobre data

        Raises:
            SignatureFormatError: si la firma no es base64url de 32 bytes
        """
        raw = _decode_signature(signature)
        expected = hmac.new(self._hmac_key, data.encode("utf-8"), hashlib.sha256).digest()
        return hmac.compare_digest(raw, expected)


def _decode_signature(signature: str) -> bytes:
    if not isinstance(signature, str) or len(signature) != HMAC_SIGNATURE_LENGTH:
        raise SignatureFormatError("La firma debe ser base64url de 43 caracteres")
    try:
        raw = base64.urlsafe_b64decode(signature + "=")
    except (binascii.Error, ValueError) as e:
        raise SignatureFormatError(f"Firma con codificación inválida: {e}") from e
    if len(raw) != hashlib.sha256().digest_size:
        raise SignatureFormatError("La firma no corresponde a un HMAC-SHA256")
    return raw
