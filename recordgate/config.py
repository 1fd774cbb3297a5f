import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

from .helpers import parse_email_list, DEFAULT_AMOUNT

# ----------------------------
# Config & Constants
# ----------------------------
RAZORPAY_API_URL = "https://api.razorpay.com/v1"
CURRENCY = "INR"
STUDENTS_TABLE = "students"
PAGE_SIZE_OPTIONS = (25, 50, 100)
DEFAULT_PAGE_SIZE = 50

SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def _float(raw: Optional[str], default: float) -> float:
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_api_url: str = RAZORPAY_API_URL
    payment_gateway: str = "razorpay"  # 'razorpay' | 'mock'
    unlock_price: float = DEFAULT_AMOUNT
    currency: str = CURRENCY

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None
    students_table: str = STUDENTS_TABLE

    admin_emails: frozenset = field(default_factory=frozenset)
    public_base_url: Optional[str] = None
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls, env: Mapping[str, str] = None) -> "Settings":
        env = os.environ if env is None else env
        return cls(
            razorpay_key_id=(
                env.get("RAZORPAY_KEY_ID")
                or env.get("NEXT_PUBLIC_RAZORPAY_KEY_ID")
            ),
            razorpay_key_secret=env.get("RAZORPAY_KEY_SECRET"),
            razorpay_api_url=env.get(
                "RAZORPAY_API_URL", RAZORPAY_API_URL
            ).rstrip("/"),
            payment_gateway=env.get("PAYMENT_GATEWAY", "razorpay").lower(),
            unlock_price=_float(env.get("UNLOCK_PRICE"), DEFAULT_AMOUNT),
            supabase_url=(env.get("SUPABASE_URL") or "").rstrip("/") or None,
            supabase_anon_key=env.get("SUPABASE_ANON_KEY"),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY"),
            students_table=env.get("STUDENTS_TABLE", STUDENTS_TABLE),
            admin_emails=parse_email_list(env.get("ADMIN_EMAILS")),
            public_base_url=env.get("PUBLIC_BASE_URL"),
            http_timeout=_float(env.get("HTTP_TIMEOUT"), 10.0),
        )

    def backend_problem(self) -> Optional[str]:
        """Returns a human readable reason why the backend can't be used,
        or None when URL and anon key look usable."""
        if not self.supabase_url or not self.supabase_anon_key:
            return "SUPABASE_URL and SUPABASE_ANON_KEY must be set"
        u = urlparse(self.supabase_url)
        if u.scheme not in ("http", "https") or not u.netloc:
            return f"SUPABASE_URL is not a valid URL: {self.supabase_url!r}"
        return None


def get_settings() -> Settings:
    # read per request; tests override this dependency
    return Settings.from_env()
