from __future__ import annotations

import calendar
from datetime import UTC, date, datetime, timedelta


def utc_now() -> datetime:
    return datetime.now(UTC)


def day_key(moment: datetime | date) -> str:
    """`YYYY-MM-DD` for the UTC calendar day containing `moment`."""
    if isinstance(moment, datetime):
        if moment.tzinfo is not None:
            moment = moment.astimezone(UTC)
        return moment.date().isoformat()
    return moment.isoformat()


def month_key(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    return f"{moment.year:04d}-{moment.month:02d}"


def trailing_days(moment: datetime, days: int) -> list[str]:
    today = moment.astimezone(UTC).date() if moment.tzinfo else moment.date()
    return [(today - timedelta(days=i)).isoformat() for i in range(days)]


def days_remaining_in_month(moment: datetime) -> int:
    if moment.tzinfo is not None:
        moment = moment.astimezone(UTC)
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return last_day - moment.day


def parse_timestamp(raw: str | datetime | None, *, default: datetime) -> datetime:
    if raw is None or raw == "":
        return default
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value
