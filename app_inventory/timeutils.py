# ==============================================================================
# UTILIDADES DE FECHA Y HORA
# ==============================================================================
# Todas las fechas del sistema son UTC con zona horaria.
# Se persisten en ISO 8601 y se aceptan algunos formatos legacy al leer.
# ==============================================================================

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional


SECONDS_PER_DAY = 24 * 60 * 60

# Formatos aceptados además de ISO 8601
_LEGACY_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def utc_now() -> datetime:
    """Hora actual en UTC (con tzinfo)."""
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Las fechas sin zona se interpretan como UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Convierte un valor a datetime UTC.

    Args:
        value: datetime, string ISO / legacy, o None

    Returns:
        datetime con zona UTC o None si el valor está vacío

    Raises:
        ValueError: si el string no tiene un formato reconocido
    """
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if not isinstance(value, str):
        raise ValueError(f"Fecha inválida: {value!r}")

    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return ensure_aware(datetime.fromisoformat(text))
    except ValueError:
        pass

    for fmt in _LEGACY_FORMATS:
        try:
            return ensure_aware(datetime.strptime(text, fmt))
        except ValueError:
            continue
    raise ValueError(f"Fecha inválida: {value!r}")


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serializa a ISO 8601 (None se mantiene)."""
    if value is None:
        return None
    return ensure_aware(value).isoformat()


def days_between_ceil(later: datetime, earlier: datetime) -> int:
    """Días completos o parciales entre dos fechas, redondeando hacia arriba."""
    delta = ensure_aware(later) - ensure_aware(earlier)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def days_ago(now: datetime, days: float) -> datetime:
    """Fecha de corte `days` días antes de `now`."""
    return ensure_aware(now) - timedelta(days=days)
