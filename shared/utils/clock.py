"""Reloj del sistema en UTC"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """UTC naive, igual que las columnas DateTime de los modelos"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
