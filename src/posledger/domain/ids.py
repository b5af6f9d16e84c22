from __future__ import annotations

import secrets
import string
import time
from datetime import datetime

_ALPHABET = string.ascii_lowercase + string.digits


def new_id(prefix: str, upper: bool = False) -> str:
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(5))
    if upper:
        suffix = suffix.upper()
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def now_iso() -> str:
    return datetime.now().isoformat(timespec="microseconds")
