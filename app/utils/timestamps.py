# app/utils/timestamps.py
"""
Horloge serveur et conversions ISO-8601.

Toutes les dates sont stockées en UTC naïf, tronquées à la milliseconde,
qui est la précision de comparaison des versions.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from app.core.exceptions import InvalidTimestampError

_EPOCH = datetime(1970, 1, 1)
ONE_MILLISECOND = timedelta(milliseconds=1)


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def utc_now() -> datetime:
    """Horloge serveur (UTC naïf, précision milliseconde)"""
    return truncate_to_millis(datetime.now(timezone.utc).replace(tzinfo=None))


def normalize(value: datetime) -> datetime:
    """Convertit en UTC naïf tronqué à la milliseconde"""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return truncate_to_millis(value)


def parse_timestamp(raw: Any) -> datetime:
    """
    Analyse un timestamp client.

    Accepte un datetime ou une chaîne ISO-8601 (suffixe Z, décalage horaire
    ou forme naïve considérée comme UTC).

    Raises:
        InvalidTimestampError: si la valeur n'est pas un timestamp valide
    """
    if isinstance(raw, datetime):
        return normalize(raw)
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidTimestampError(f"Timestamp invalide: {raw!r}")

    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return normalize(datetime.fromisoformat(text))
    except ValueError as e:
        raise InvalidTimestampError(f"Timestamp invalide: {raw!r}") from e


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format de sortie : 2024-01-01T10:00:00.000Z"""
    if value is None:
        return None
    return normalize(value).isoformat(timespec="milliseconds") + "Z"


def to_epoch_millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return (normalize(value) - _EPOCH) // ONE_MILLISECOND
