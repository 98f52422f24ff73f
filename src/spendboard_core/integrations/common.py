"""Helpers shared by the vendor clients."""
import math
from time import monotonic
from typing import Any, Iterable, Optional


def redact(text: str, secrets: Iterable[Optional[str]]) -> str:
    if not text:
        return text
    redacted = text
    for secret in secrets:
        if secret:
            redacted = redacted.replace(secret, "[REDACTED]")
    return redacted


def safe_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def safe_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def round2(value: float) -> float:
    """Round half up to 2 decimal places."""
    return math.floor(value * 100 + 0.5) / 100


def elapsed_ms(started: float) -> int:
    """Milliseconds since a monotonic() timestamp."""
    return int((monotonic() - started) * 1000)
