"""
Medication helpers -- pure functions, ZERO I/O.

Dose-time templates per frequency, schedule slot generation, and the
adherence rating rules.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from care_modules.medication.models import ConcernLevel, MedicationFrequency, Trend

DOSE_TIME_TEMPLATES: dict[MedicationFrequency, tuple[time, ...]] = {
    MedicationFrequency.OD: (time(8, 0),),
    MedicationFrequency.BD: (time(8, 0), time(20, 0)),
    MedicationFrequency.TDS: (time(8, 0), time(14, 0), time(20, 0)),
    MedicationFrequency.QDS: (time(8, 0), time(12, 0), time(16, 0), time(20, 0)),
    MedicationFrequency.QID: (time(8, 0), time(12, 0), time(16, 0), time(20, 0)),
    MedicationFrequency.WEEKLY: (time(8, 0),),
    MedicationFrequency.MONTHLY: (time(8, 0),),
    MedicationFrequency.PRN: (),
}

TREND_TOLERANCE = 5

# Round times are UK wall-clock times; slots are stored in UTC
CARE_HOME_TIMEZONE = ZoneInfo("Europe/London")


def local_date(instant: datetime, tz: ZoneInfo = CARE_HOME_TIMEZONE) -> date:
    """Calendar date of ``instant`` in the care home's timezone."""
    return instant.astimezone(tz).date()


def _slot(day: date, at: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)


def _runs_on(frequency: MedicationFrequency, day: date, anchor: date) -> bool:
    if frequency == MedicationFrequency.WEEKLY:
        return day.weekday() == anchor.weekday()
    if frequency == MedicationFrequency.MONTHLY:
        # Anchor days beyond the month's length fall on its last day.
        last = calendar.monthrange(day.year, day.month)[1]
        return day.day == min(anchor.day, last)
    return True


def schedule_slots(
    frequency: MedicationFrequency,
    anchor: date,
    start_date: date,
    duration_days: int,
    end_date: date | None = None,
    now: datetime | None = None,
    tz: ZoneInfo = CARE_HOME_TIMEZONE,
) -> list[datetime]:
    """
    Dose times for ``duration_days`` from ``start_date``.

    ``anchor`` is the prescription start (weekday / day-of-month for WEEKLY
    and MONTHLY).  Slots after ``end_date`` are dropped.  Round times are read
    as wall-clock times in ``tz``, so the 08:00 round stays at 08:00 across
    the clock change; the returned slots are UTC.  PRN has no slots; STAT is
    a single slot at ``now``.
    """
    if frequency == MedicationFrequency.PRN:
        return []
    if frequency == MedicationFrequency.STAT:
        return [now.astimezone(timezone.utc)] if now is not None else []
    times = DOSE_TIME_TEMPLATES[frequency]
    first = max(start_date, anchor)
    slots: list[datetime] = []
    for offset in range(duration_days):
        day = start_date + timedelta(days=offset)
        if day < first:
            continue
        if end_date is not None and day > end_date:
            break
        if _runs_on(frequency, day, anchor):
            slots.extend(_slot(day, t, tz) for t in times)
    return slots


def adherence_rate(administered: int, total: int) -> int:
    return round(administered / total * 100) if total else 0


def concern_level(rate: int) -> ConcernLevel:
    if rate >= 90:
        return ConcernLevel.NONE
    if rate >= 75:
        return ConcernLevel.LOW
    if rate >= 60:
        return ConcernLevel.MEDIUM
    return ConcernLevel.HIGH


def trend_direction(current: int, previous: int | None) -> Trend:
    if previous is None:
        return Trend.STABLE
    if current > previous + TREND_TOLERANCE:
        return Trend.IMPROVING
    if current < previous - TREND_TOLERANCE:
        return Trend.DECLINING
    return Trend.STABLE


def adherence_recommendations(rate: int, missed: int, refused: int, trend: Trend) -> list[str]:
    recommendations: list[str] = []
    if rate < 90:
        if missed > refused * 2:
            recommendations.append("High number of missed doses: review medication round timing")
            recommendations.append("Consider additional staff training on medication administration")
            recommendations.append("Enable reminders 30 minutes before dose time")
        if refused > 5:
            recommendations.append("Frequent refusals: consult the prescriber about formulation")
            recommendations.append("Record the resident's reasons for refusal in the care plan")
        if trend == Trend.DECLINING:
            recommendations.append("URGENT: adherence declining, schedule a review with the prescriber")
            recommendations.append("Investigate barriers to medication administration")
    elif trend == Trend.IMPROVING:
        recommendations.append("Excellent adherence: continue current approach")
    return recommendations
