from datetime import date, datetime, timezone


def utcnow_iso() -> str:
    # Microseconds keep "most recently created" ordering stable within one second.
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    if " " in text and "T" not in text:
        text = text.replace(" ", "T", 1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_timestamp(value: str | None) -> datetime:
    """Parse stored timestamps of any era; unparseable or missing values sort oldest."""
    parsed = _from_iso(value)
    if parsed is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    return parsed


def parse_date(value: str | None) -> date | None:
    """Calendar date of a stored timestamp or date string, None when it cannot be read."""
    parsed = _from_iso(value)
    return parsed.date() if parsed else None
