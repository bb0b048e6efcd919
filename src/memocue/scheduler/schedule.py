"""Schedule calculation utilities.

Computes the next push time for every schedule type. Wall-clock arithmetic is
done in the timezone carried by ``now``; cron expressions are evaluated with
croniter. Nothing in here raises for bad input: unusable schedules yield
``None`` and a warning.
"""
import calendar
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from croniter import croniter
from loguru import logger

from .errors import ScheduleComputationError
from .types import (
    Schedule,
    OnceSchedule,
    HourlySchedule,
    DailySchedule,
    WeeklySchedule,
    MonthlySchedule,
    MonthlyIntervalSchedule,
    IntervalSchedule,
    WorkdaysSchedule,
    WeekendSchedule,
    CronSchedule,
    CustomSchedule,
)

logger = logger.bind(module="scheduler.schedule")

# Weekday numbers follow the dashboard convention: 0=Sunday .. 6=Saturday
WORKDAYS = frozenset({1, 2, 3, 4, 5})
WEEKEND = frozenset({0, 6})

# Any day 1-31 shows up within a year, so this only stops runaway loops
_MAX_MONTH_SCAN = 48

_WEEKDAY_NAMES = ["周日", "周一", "周二", "周三", "周四", "周五", "周六"]


def now_in(tz_name: str) -> datetime:
    """Current time in the named timezone."""
    return datetime.now(ZoneInfo(tz_name))


def parse_clock(value: str) -> tuple[int, int] | None:
    """Parse 'HH:MM' into (hour, minute)."""
    try:
        hour_str, minute_str = str(value).split(":")[:2]
        hour, minute = int(hour_str), int(minute_str)
    except ValueError:
        return None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def parse_datetime(value: str, tz: tzinfo) -> datetime | None:
    """Parse an ISO-8601 string; naive values are read in ``tz``."""
    try:
        dt = datetime.fromisoformat(str(value).strip())
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


def js_weekday(day: date) -> int:
    """Weekday with Sunday as 0."""
    return (day.weekday() + 1) % 7


def compute_next_push_at(
    schedule: Schedule | None,
    now: datetime,
    last_push_at: datetime | None = None,
) -> datetime | None:
    """Compute the next push time.

    Args:
        schedule: The schedule configuration
        now: Current time; naive values are taken as UTC
        last_push_at: Last push time (used by interval schedules)

    Returns:
        Next push time strictly after ``now``, or None if there is none
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    try:
        if isinstance(schedule, OnceSchedule):
            result = _compute_once_next(schedule, now)
        elif isinstance(schedule, HourlySchedule):
            result = _compute_hourly_next(schedule, now)
        elif isinstance(schedule, DailySchedule):
            result = _compute_daily_next(schedule.times, now)
        elif isinstance(schedule, WeeklySchedule):
            result = _compute_weekly_next(schedule, now)
        elif isinstance(schedule, MonthlySchedule):
            result = _compute_monthly_next(schedule, now)
        elif isinstance(schedule, MonthlyIntervalSchedule):
            result = _compute_monthly_interval_next(schedule, now)
        elif isinstance(schedule, IntervalSchedule):
            result = _compute_interval_next(schedule, now, last_push_at)
        elif isinstance(schedule, WorkdaysSchedule):
            result = _compute_weekday_set_next(schedule.times, WORKDAYS, now)
        elif isinstance(schedule, WeekendSchedule):
            result = _compute_weekday_set_next(schedule.times, WEEKEND, now)
        elif isinstance(schedule, CronSchedule):
            result = _compute_cron_next(schedule, now)
        elif isinstance(schedule, CustomSchedule):
            result = _compute_custom_next(schedule, now)
        else:
            raise ScheduleComputationError(f"Unknown schedule type: {type(schedule).__name__}")
    except (ScheduleComputationError, ValueError, TypeError, OverflowError) as e:
        logger.warning(f"Failed to compute next push time: {e}")
        return None

    if result is None or result <= now:
        return None
    return result


def _at(day: date, hour: int, minute: int, tz: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)


def _clocks(times: list[str]) -> list[tuple[int, int]]:
    clocks = []
    for value in times:
        clock = parse_clock(value)
        if clock is None:
            logger.warning(f"Ignoring invalid time of day: {value!r}")
            continue
        clocks.append(clock)
    return sorted(set(clocks))


def _compute_once_next(schedule: OnceSchedule, now: datetime) -> datetime | None:
    """Compute next run for a one-time schedule."""
    at = parse_datetime(schedule.at, now.tzinfo) if schedule.at else None
    if at is None:
        logger.warning(f"Invalid once datetime: {schedule.at!r}")
        return None
    return at if at > now else None  # Already passed


def _compute_hourly_next(schedule: HourlySchedule, now: datetime) -> datetime | None:
    """Compute next run for an hourly schedule with an optional hour window."""
    if not 0 <= schedule.minute <= 59:
        logger.warning(f"Invalid hourly minute: {schedule.minute}")
        return None

    tz = now.tzinfo
    next_time = now.replace(minute=schedule.minute, second=0, microsecond=0)
    if next_time <= now:
        # Step in UTC so the hour is real across DST changes
        next_time = (next_time.astimezone(timezone.utc) + timedelta(hours=1)).astimezone(tz)

    start, end = schedule.start_hour, schedule.end_hour
    if start is None or end is None:
        return next_time

    hour = next_time.hour
    if start <= end:
        in_window = start <= hour <= end
    else:
        # Window wraps past midnight, e.g. 22 -> 6
        in_window = hour >= start or hour <= end

    if in_window:
        return next_time
    if hour < start:
        return _at(next_time.date(), start, schedule.minute, tz)
    return _at(next_time.date() + timedelta(days=1), start, schedule.minute, tz)


def _compute_daily_next(times: list[str], now: datetime) -> datetime | None:
    """Earliest future time today, otherwise earliest time tomorrow."""
    clocks = _clocks(times)
    if not clocks:
        return None

    today = now.date()
    tomorrow = today + timedelta(days=1)
    candidates = [_at(today, h, m, now.tzinfo) for h, m in clocks]
    candidates = [c for c in candidates if c > now]
    candidates += [_at(tomorrow, h, m, now.tzinfo) for h, m in clocks]
    return min(candidates)


def _compute_weekly_next(schedule: WeeklySchedule, now: datetime) -> datetime | None:
    clock = parse_clock(schedule.time)
    if not schedule.days or clock is None:
        return None
    return _compute_weekday_set_next([schedule.time], frozenset(schedule.days), now)


def _compute_weekday_set_next(
    times: list[str],
    weekdays: frozenset[int],
    now: datetime,
) -> datetime | None:
    """Scan forward day by day (up to a week) for a matching weekday and time."""
    clocks = _clocks(times)
    if not clocks or not weekdays:
        return None

    today = now.date()
    for offset in range(8):
        day = today + timedelta(days=offset)
        if js_weekday(day) not in weekdays:
            continue
        for hour, minute in clocks:
            candidate = _at(day, hour, minute, now.tzinfo)
            if candidate > now:
                return candidate
    return None


def _compute_monthly_next(schedule: MonthlySchedule, now: datetime) -> datetime | None:
    """Earliest valid future day-of-month, advancing month by month."""
    clock = parse_clock(schedule.time)
    days = sorted({d for d in schedule.days if 1 <= d <= 31})
    if not days or clock is None:
        return None

    hour, minute = clock
    year, month = now.year, now.month
    for _ in range(_MAX_MONTH_SCAN):
        last_day = calendar.monthrange(year, month)[1]
        for day in days:
            if day > last_day:
                break
            candidate = _at(date(year, month, day), hour, minute, now.tzinfo)
            if candidate > now:
                return candidate
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return None


def add_months(anchor: date, months: int) -> date:
    """Add whole months, clamping the day to the target month's last day."""
    total = anchor.month - 1 + months
    year = anchor.year + total // 12
    month = total % 12 + 1
    day = min(anchor.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _compute_monthly_interval_next(
    schedule: MonthlyIntervalSchedule,
    now: datetime,
) -> datetime | None:
    """Every ``interval`` months on the anchor's day, clamped to month end."""
    clock = parse_clock(schedule.time)
    if schedule.interval < 1 or not schedule.first_date or clock is None:
        return None

    anchor = date.fromisoformat(schedule.first_date[:10])
    hour, minute = clock
    first = _at(anchor, hour, minute, now.tzinfo)
    if first > now:
        return first

    months_elapsed = (now.year - anchor.year) * 12 + (now.month - anchor.month)
    cycle = max(months_elapsed // schedule.interval, 0)

    # Each occurrence is projected from the anchor so a clamp in one month
    # does not shift the day of later ones
    for _ in range(3):
        candidate = _at(add_months(anchor, cycle * schedule.interval), hour, minute, now.tzinfo)
        if candidate > now:
            return candidate
        cycle += 1
    return None


def _compute_interval_next(
    schedule: IntervalSchedule,
    now: datetime,
    last_push_at: datetime | None,
) -> datetime | None:
    """``last_push_at + interval``, or ``now + interval`` if that already passed."""
    if schedule.minutes <= 0:
        return None

    step = timedelta(minutes=schedule.minutes)
    next_time = (last_push_at or now) + step
    return next_time if next_time > now else now + step


def _compute_cron_next(schedule: CronSchedule, now: datetime) -> datetime | None:
    """Compute next run for cron schedule using croniter.

    Supports both 5-part (minute precision) and 6-part (second precision) formats.
    """
    parts = schedule.expression.split()
    if len(parts) not in (5, 6):
        logger.warning(f"Invalid cron expression: {schedule.expression!r}")
        return None

    try:
        cron = croniter(schedule.expression, now, second_at_beginning=len(parts) == 6)
        return cron.get_next(datetime)
    except Exception as e:
        logger.warning(f"Cron expression parse failed ({schedule.expression!r}): {e}")
        return None


def _compute_custom_next(schedule: CustomSchedule, now: datetime) -> datetime | None:
    """Earliest listed instant strictly after now."""
    future = []
    for value in schedule.dates:
        dt = parse_datetime(value, now.tzinfo)
        if dt is None:
            logger.warning(f"Ignoring invalid custom date: {value!r}")
        elif dt > now:
            future.append(dt)
    return min(future) if future else None


def validate_cron_expression(expression: str) -> bool:
    """Validate a cron expression (5-part or 6-part)."""
    parts = expression.split()
    if len(parts) not in (5, 6):
        return False
    try:
        croniter(expression, second_at_beginning=len(parts) == 6)
    except Exception:
        return False
    return True


def schedule_to_human(schedule: Schedule | None) -> str:
    """Convert schedule to human-readable description (Chinese)."""
    if isinstance(schedule, OnceSchedule):
        return f"在 {schedule.at} 执行一次" if schedule.at else "未设置执行时间"
    elif isinstance(schedule, HourlySchedule):
        label = f"每小时第 {schedule.minute} 分钟"
        if schedule.start_hour is not None and schedule.end_hour is not None:
            label += f" ({schedule.start_hour}:00-{schedule.end_hour}:59)"
        return label
    elif isinstance(schedule, DailySchedule):
        return f"每天 {', '.join(schedule.times)}"
    elif isinstance(schedule, WeeklySchedule):
        names = "、".join(_WEEKDAY_NAMES[d % 7] for d in sorted(schedule.days))
        return f"每{names} {schedule.time}"
    elif isinstance(schedule, MonthlySchedule):
        days = "、".join(f"{d}日" for d in sorted(schedule.days))
        return f"每月 {days} {schedule.time}"
    elif isinstance(schedule, MonthlyIntervalSchedule):
        return f"每隔 {schedule.interval} 个月 ({schedule.first_date} 起) {schedule.time}"
    elif isinstance(schedule, IntervalSchedule):
        return f"每隔 {schedule.minutes:g} 分钟"
    elif isinstance(schedule, WorkdaysSchedule):
        return f"工作日 {', '.join(schedule.times)}"
    elif isinstance(schedule, WeekendSchedule):
        return f"周末 {', '.join(schedule.times)}"
    elif isinstance(schedule, CronSchedule):
        return f"Cron: {schedule.expression}"
    elif isinstance(schedule, CustomSchedule):
        return f"自定义 {len(schedule.dates)} 个时间点"
    return "未知调度类型"
