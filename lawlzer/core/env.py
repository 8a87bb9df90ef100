from __future__ import annotations

import os
from typing import Optional


def env_str(name: str) -> Optional[str]:
    """Stripped value, or None when unset or blank."""
    return (os.getenv(name, "") or "").strip() or None


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def env_int(name: str, default: int, *, minimum: int) -> int:
    raw = (os.getenv(name, "") or "").strip()
    if not raw:
        return default
    try:
        value = int(float(raw))
    except ValueError:
        return default
    return max(value, minimum)
