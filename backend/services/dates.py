from datetime import date, datetime, timedelta, timezone

from backend.errors import ValidationError


def normalize_date_key(value: date | datetime | str | None, *, field: str = "date") -> str:
    """
    Truncate ``value`` to its calendar day and return it as ``YYYY-MM-DD``.

    Aware datetimes are converted to UTC first; naive ones are taken as-is.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required.")

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be an ISO date string.")

    text = value.strip()
    try:
        if len(text) == 10:
            return date.fromisoformat(text).isoformat()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return normalize_date_key(datetime.fromisoformat(text), field=field)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date string, got {value!r}.")


def day_after(date_key: str) -> str:
    return (date.fromisoformat(date_key) + timedelta(days=1)).isoformat()


def date_window(
    start: date | datetime | str | None = None,
    end: date | datetime | str | None = None,
) -> tuple[str | None, str | None]:
    """Return ``(lower, upper_exclusive)`` day keys covering ``[start, end]``."""
    lower = normalize_date_key(start, field="startDate") if start is not None else None
    upper = day_after(normalize_date_key(end, field="endDate")) if end is not None else None
    return lower, upper
