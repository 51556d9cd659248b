import hmac
import re
import time
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def now_ts() -> float:
    # wall clock, persisted; durations use infra.timings
    return time.time()


def new_id() -> str:
    # ids end up inside the token string; a UUID never contains ':'
    return str(uuid.uuid4())


def to_iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def from_iso(value: Union[str, int, float]) -> float:
    """Epoch seconds from an ISO-8601 string (naive means UTC) or a number.

    Raises ValueError for anything else.
    """
    if isinstance(value, bool):
        raise ValueError("not a timestamp")
    if isinstance(value, (int, float)):
        return float(value)
    dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and _EMAIL_RE.match(email.strip()) is not None


def ct_equal(a: Optional[str], b: Optional[str]) -> bool:
    if a is None or b is None:
        return False
    return hmac.compare_digest(a.encode(), b.encode())
