from datetime import datetime, timedelta


def get_week_number(date: datetime = None) -> int:
    """ISO week number (Monday-start weeks, week 1 contains January 4th)"""
    date = date or datetime.utcnow()
    return date.isocalendar()[1]


def get_week_year(date: datetime = None) -> int:
    """ISO year owning the week, which differs from the calendar year around New Year"""
    date = date or datetime.utcnow()
    return date.isocalendar()[0]


def get_week_start(date: datetime = None) -> datetime:
    """Midnight on the Monday of the ISO week containing date"""
    date = date or datetime.utcnow()
    start = date - timedelta(days=date.weekday())
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def skip_weekend(deadline: datetime) -> datetime:
    """Push a Saturday or Sunday deadline to the following Monday, keeping the time of day"""
    weekday = deadline.weekday()
    if weekday == 5:  # Saturday
        return deadline + timedelta(days=2)
    if weekday == 6:  # Sunday
        return deadline + timedelta(days=1)
    return deadline


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600
