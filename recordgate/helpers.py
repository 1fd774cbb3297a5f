import time
import re
import math
import hmac
import hashlib
from typing import Iterable, Optional, Any

DEFAULT_AMOUNT = 10


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def now_ms() -> int:
    return int(time.time() * 1000)


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    email = email.strip()
    # simple but effective email check
    return re.match(r"^[^@\s]+@[^@\s]+\.[^@\s]+$", email) is not None


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def parse_email_list(raw: Optional[str]) -> frozenset:
    if not raw:
        return frozenset()
    return frozenset(
        e.strip().lower() for e in raw.split(",") if e.strip()
    )


def email_in(email: Optional[str], allowlist: Iterable[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in allowlist


# ----------------------------
# Money
# ----------------------------
def parse_amount(raw: Any, default: float = DEFAULT_AMOUNT) -> float:
    """Coerce a client-supplied amount; anything unusable (missing, text,
    NaN, infinity, zero) falls back to `default`."""
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(value) or value == 0:
        return default
    return value


def to_minor_units(amount: float) -> int:
    # half rounds up, e.g. 0.125 -> 13
    return int(math.floor(amount * 100 + 0.5))


def build_receipt(student_id: Any, ts_ms: Optional[int] = None) -> str:
    sid = student_id if student_id not in (None, "", 0) else "unknown"
    return f"stu_{sid}_{ts_ms if ts_ms is not None else now_ms()}"


# ----------------------------
# Signatures
# ----------------------------
def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    return hmac.new(
        secret.encode(),
        f"{order_id}|{payment_id}".encode(),
        hashlib.sha256,
    ).hexdigest()
