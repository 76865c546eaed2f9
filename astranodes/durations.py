import datetime

LIFETIME_DAYS = 36500

DURATION_DAYS = {
    'weekly': 7,
    'monthly': 30,
    'lifetime': LIFETIME_DAYS,
}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso(dt: datetime.datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    dt = dt.astimezone(datetime.timezone.utc)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f'{dt.microsecond // 1000:03d}Z'


def parse_iso(value):
    """Parse an ISO timestamp or a sqlite 'YYYY-MM-DD HH:MM:SS' string as UTC. None stays None."""
    if not value:
        return None
    if isinstance(value, datetime.datetime):
        dt = value
    else:
        dt = datetime.datetime.fromisoformat(str(value).strip().replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def now_iso() -> str:
    return to_iso(utcnow())


def get_duration_days(duration_type, duration_days=None) -> int:
    if duration_type in DURATION_DAYS:
        return DURATION_DAYS[duration_type]
    days = int(duration_days or 0)
    return days if days > 0 else 30


def add_days(start, days) -> str:
    base = parse_iso(start) or utcnow()
    return to_iso(base + datetime.timedelta(days=days))


def renewal_base(expires_at, now=None):
    """Renewals stack on top of time already paid for, never on a past expiry."""
    now = now or utcnow()
    current = parse_iso(expires_at)
    return current if current and current > now else now
