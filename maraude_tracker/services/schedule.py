"""
Maraude Tracker - Schedule Engine
Weekly recurrence and one-off date arithmetic for maraude actions.

Days of the week follow ISO numbering: Monday=1 ... Sunday=7. Every function
here takes "now" as an argument; the wall clock is only read by
``current_time`` (and the ``get_now`` dependency built on it).
"""
from datetime import date, datetime, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from maraude_tracker.config import settings
from maraude_tracker.errors import ValidationError

DAYS = [
    {"value": 1, "name": "Lundi", "short": "Lun"},
    {"value": 2, "name": "Mardi", "short": "Mar"},
    {"value": 3, "name": "Mercredi", "short": "Mer"},
    {"value": 4, "name": "Jeudi", "short": "Jeu"},
    {"value": 5, "name": "Vendredi", "short": "Ven"},
    {"value": 6, "name": "Samedi", "short": "Sam"},
    {"value": 7, "name": "Dimanche", "short": "Dim"},
]

ONE_TIME_LABEL = "Ponctuel"

_DAY_NAMES = {d["value"]: d["name"] for d in DAYS}


def iso_weekday(d: date) -> int:
    """ISO weekday of a date, Monday=1 ... Sunday=7."""
    return d.isoweekday()


def day_label(day_of_week: Optional[int]) -> str:
    if day_of_week is None:
        return ONE_TIME_LABEL
    return _DAY_NAMES.get(day_of_week, ONE_TIME_LABEL)


def day_name(action) -> str:
    return day_label(action.day_of_week)


def _follows_weekly_rule(action) -> bool:
    return bool(action.is_recurring and action.is_active and action.day_of_week)


def is_happening_today(action, now: datetime) -> bool:
    today = now.date()
    if not _follows_weekly_rule(action):
        return action.scheduled_date is not None and action.scheduled_date == today
    return iso_weekday(today) == action.day_of_week


def next_occurrence(action, now: datetime) -> Optional[date]:
    """
    Next calendar date the action takes place.

    Inactive or one-time actions return their scheduled date as-is, even when
    it lies in the past. A recurring action whose start time already passed
    today rolls over to the same weekday next week.
    """
    if not _follows_weekly_rule(action):
        return action.scheduled_date

    today = now.date()
    days_ahead = (action.day_of_week - iso_weekday(today)) % 7
    if days_ahead == 0 and now.time() > action.start_time:
        days_ahead = 7
    return today + timedelta(days=days_ahead)


def slot_elapsed(action, now: datetime) -> bool:
    """True once today's slot of an action happening today is over."""
    if not is_happening_today(action, now):
        return False
    end = action.end_time
    if end is not None and end < action.start_time:
        # Runs past midnight
        return False
    return now.time() > (end or action.start_time)


def normalize_recurrence(is_recurring: bool, day_of_week: Optional[int],
                         scheduled_date: Optional[date]) -> Tuple[Optional[int], Optional[date]]:
    """Return the (day_of_week, scheduled_date) pair a stored action may hold."""
    if is_recurring:
        if day_of_week is None:
            raise ValidationError(details={"dayOfWeek": "required for recurring maraudes"})
        return day_of_week, None
    if scheduled_date is None:
        raise ValidationError(details={"scheduledDate": "required for one-time maraudes"})
    return None, scheduled_date


def current_time() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    if settings.TIMEZONE:
        return datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
    return datetime.now()


def get_now() -> datetime:
    """FastAPI dependency for the request's notion of now."""
    return current_time()
