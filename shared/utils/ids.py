"""Normalización de identificadores"""
import uuid

from shared.errors import ValidationError


def as_uuid(value) -> uuid.UUID:
    """Aceptar UUID o string; los tokens JWT traen el user_id como string"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Identificador inválido: {value}")
