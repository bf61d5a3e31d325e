# bniconnect/base_utils.py

import json
import math
import re
import secrets
from datetime import datetime, timezone


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(6)}_{int(datetime.now().timestamp() * 1000)}"


def as_array(value) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return list(value.values())
    return []


def digits_only(value) -> str:
    return re.sub(r"\D+", "", str(value or ""))


def parse_date_only(value) -> datetime | None:
    """
    Accepts YYYY-MM-DD, DD/MM/YYYY or an ISO timestamp. Date-only forms are
    local dates at midnight. Returns a naive local datetime, or None.
    """
    s = str(value or "").strip()
    if not s:
        return None

    m = re.match(r"^(\d{4})-(\d{2})-(\d{2})$", s)
    if m:
        try:
            return datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return None

    m = re.match(r"^(\d{2})/(\d{2})/(\d{4})$", s)
    if m:
        try:
            return datetime(int(m.group(3)), int(m.group(2)), int(m.group(1)))
        except ValueError:
            return None

    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone().replace(tzinfo=None)
    return dt


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def week_key(now: datetime) -> str:
    # ceil(((now - Jan 1) / 1 day + 1) / 7), not the ISO-8601 week number
    jan1 = datetime(now.year, 1, 1, tzinfo=now.tzinfo)
    elapsed_days = (now - jan1).total_seconds() / 86400
    week = math.ceil((elapsed_days + 1) / 7)
    return f"{now.year}-W{week:02d}"


def to_millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


class BaseUtils():
    # Overridable clock so tests can pin "now"
    clock = staticmethod(datetime.now)

    # -----------------------
    # General Utils
    # -----------------------

    def _now(self) -> datetime:
        return self.clock()

    def _now_ms(self) -> int:
        return to_millis(self._now())

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value, ensure_ascii=False)
        except TypeError:
            return str(value).strip()
