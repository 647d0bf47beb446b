"""Manejo de JWT tokens"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from jose import JWTError, jwt
import logging

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_access_token(
    data: Dict,
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None
) -> str:
    '''Crear token de acceso JWT'''
    settings = settings or get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({'exp': expire, 'type': 'access'})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, settings: Optional[Settings] = None) -> Optional[Dict]:
    '''Decodificar y validar token JWT'''
    settings = settings or get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token rechazado: {e}")
        return None


def payload_to_user(payload: Dict) -> Optional[Dict]:
    '''Extraer el usuario (id y rol) de los claims del token'''
    user_id = payload.get('sub') or payload.get('user_id')
    if not user_id:
        return None

    role = payload.get('role') or payload.get('app_metadata', {}).get('role', 'player')
    return {
        'user_id': str(user_id),
        'email': payload.get('email'),
        'role': str(role).lower()
    }
