from datetime import datetime, timezone, timedelta
import re

# e.g., "20s", "5m", "1h30m", "2d3h", "90m", "  2h  "
DELAY_RE = re.compile(r"(?i)^\s*(?:(\d+)\s*d)?\s*(?:(\d+)\s*h)?\s*(?:(\d+)\s*m)?\s*(?:(\d+)\s*s)?\s*$")


def parse_duration(s: str) -> int:
    """
    Parse duration strings like '20s', '5m', '1h30m', '2d3h', or a bare
    number of seconds. Returns total seconds (int). Zero is allowed.
    """
    if s is None or not str(s).strip():
        raise ValueError("duration string is empty")
    s = str(s).strip()
    if s.isdigit():
        return int(s)
    m = DELAY_RE.match(s)
    if not m or not any(m.groups()):
        raise ValueError(f"Invalid duration format: {s!r}")
    d, h, m_, s_ = m.groups()
    total = 0
    if d:  total += int(d) * 86400
    if h:  total += int(h) * 3600
    if m_: total += int(m_) * 60
    if s_: total += int(s_)
    return total


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """UTC timestamp like '2025-11-06T09:12:34.123456Z'."""
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def from_iso(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def retention_cutoff(now: datetime, days: int) -> datetime:
    return now - timedelta(days=days)
