from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
