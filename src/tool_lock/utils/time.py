from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    """Timezone-aware local time; schedules are evaluated in wall-clock time."""
    return datetime.now().astimezone()


def parse_time_string(time_str: str) -> datetime:
    """Parses time strings like '8pm', '8:30pm', '20:00', '20:30'."""
    formats = ["%I%p", "%I:%M%p", "%H:%M", "%H:%M:%S"]
    time_str = time_str.lower().replace(" ", "")
    now = datetime.now()
    for fmt in formats:
        try:
            parsed_time = datetime.strptime(time_str, fmt).time()
            return datetime.combine(now.date(), parsed_time)
        except ValueError:
            continue
    raise ValueError(f"Could not parse time: {time_str}")


def normalize_time_of_day(time_str: str) -> str:
    """Canonical zero-padded 24h 'HH:MM' form, so string comparison orders correctly."""
    return parse_time_string(time_str).strftime("%H:%M")


def format_duration_seconds(seconds: int) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 30m' or '45m').
    """
    minutes = seconds // 60
    if minutes == 0 and seconds > 0:
        return "<1m"
    elif minutes <= 60:
        return f"{minutes}m"
    else:
        hours = minutes // 60
        remaining_minutes = minutes % 60
        return f"{hours}h {remaining_minutes}m"


def format_clock(moment: datetime) -> str:
    """Local HH:MM for notifications and CLI output."""
    return moment.astimezone().strftime("%H:%M")


def seconds_until(moment: datetime | None, now: datetime | None = None) -> int:
    if moment is None:
        return 0
    now = now or utc_now()
    return max(0, int((moment - now) / timedelta(seconds=1)))
