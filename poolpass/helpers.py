import time
import re
import random
from datetime import datetime, timezone
import hmac
from typing import Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


_rng = random.SystemRandom()


def new_ticket_id(prefix: str) -> str:
    # PREFIX-NNNNNN, six digits without a leading zero
    return f"{prefix}-{_rng.randint(100000, 999999)}"


def mask_key(key: Optional[str]) -> str:
    if not key:
        return "(missing)"
    if len(key) <= 10:
        return f"{key[:4]}…"
    return f"{key[:6]}…{key[-4:]}"
