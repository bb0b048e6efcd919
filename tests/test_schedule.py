"""Tests for next-push-time computation."""
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from memocue.scheduler.models import Task
from memocue.scheduler.schedule import (
    add_months,
    compute_next_push_at,
    parse_clock,
    schedule_to_human,
    validate_cron_expression,
)
from memocue.scheduler.types import (
    CronSchedule,
    CustomSchedule,
    DailySchedule,
    HourlySchedule,
    IntervalSchedule,
    MonthlyIntervalSchedule,
    MonthlySchedule,
    OnceSchedule,
    WeekendSchedule,
    WeeklySchedule,
    WorkdaysSchedule,
    schedule_from_dict,
)

SH = ZoneInfo("Asia/Shanghai")


def at(year, month, day, hour=0, minute=0, second=0):
    return datetime(year, month, day, hour, minute, second, tzinfo=SH)


class TestDaily:
    """Daily schedules."""

    def test_time_passed_today_moves_to_tomorrow(self):
        schedule = DailySchedule(times=["09:00"])
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10)) == at(2024, 1, 2, 9)

    def test_earliest_remaining_time_today(self):
        schedule = DailySchedule(times=["18:00", "09:00"])
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10)) == at(2024, 1, 1, 18)

    def test_exact_time_is_not_returned(self):
        schedule = DailySchedule(times=["09:00"])
        assert compute_next_push_at(schedule, at(2024, 1, 1, 9)) == at(2024, 1, 2, 9)

    def test_invalid_times_are_ignored(self):
        schedule = DailySchedule(times=["25:00", "oops", "07:30"])
        assert compute_next_push_at(schedule, at(2024, 1, 1, 6)) == at(2024, 1, 1, 7, 30)

    def test_no_valid_time(self):
        assert compute_next_push_at(DailySchedule(times=["25:00"]), at(2024, 1, 1)) is None
        assert compute_next_push_at(DailySchedule(times=[]), at(2024, 1, 1)) is None


class TestWeekly:
    """Weekly, workday and weekend schedules (0=Sunday)."""

    def test_same_day_before_time(self):
        # 2024-01-01 is a Monday
        schedule = WeeklySchedule(days=[1, 3], time="08:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 7)) == at(2024, 1, 1, 8)

    def test_same_day_after_time_moves_to_next_listed_day(self):
        schedule = WeeklySchedule(days=[1, 3], time="08:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 9)) == at(2024, 1, 3, 8)

    def test_sunday_is_zero(self):
        schedule = WeeklySchedule(days=[0], time="10:00")
        assert compute_next_push_at(schedule, at(2024, 1, 6, 12)) == at(2024, 1, 7, 10)

    def test_single_day_wraps_a_full_week(self):
        schedule = WeeklySchedule(days=[1], time="08:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 9)) == at(2024, 1, 8, 8)

    def test_empty_days(self):
        assert compute_next_push_at(WeeklySchedule(days=[], time="08:00"), at(2024, 1, 1)) is None

    def test_workdays_skip_weekend(self):
        schedule = WorkdaysSchedule(times=["09:00"])
        # Friday evening -> Monday morning
        assert compute_next_push_at(schedule, at(2024, 1, 5, 19)) == at(2024, 1, 8, 9)

    def test_weekend(self):
        schedule = WeekendSchedule(times=["10:00", "20:00"])
        assert compute_next_push_at(schedule, at(2024, 1, 1, 12)) == at(2024, 1, 6, 10)
        assert compute_next_push_at(schedule, at(2024, 1, 6, 12)) == at(2024, 1, 6, 20)


class TestMonthly:
    """Monthly schedules."""

    def test_day_31_skips_short_months(self):
        schedule = MonthlySchedule(days=[31], time="09:00")
        # April has 30 days
        assert compute_next_push_at(schedule, at(2024, 4, 1)) == at(2024, 5, 31, 9)

    def test_day_30_skips_february(self):
        schedule = MonthlySchedule(days=[30], time="09:00")
        assert compute_next_push_at(schedule, at(2024, 2, 1)) == at(2024, 3, 30, 9)

    def test_earliest_listed_day(self):
        schedule = MonthlySchedule(days=[15, 1], time="09:00")
        assert compute_next_push_at(schedule, at(2024, 1, 10)) == at(2024, 1, 15, 9)
        assert compute_next_push_at(schedule, at(2024, 1, 20)) == at(2024, 2, 1, 9)

    def test_year_rollover(self):
        schedule = MonthlySchedule(days=[5], time="09:00")
        assert compute_next_push_at(schedule, at(2024, 12, 6)) == at(2025, 1, 5, 9)

    def test_legacy_single_day(self):
        schedule = schedule_from_dict({"type": "monthly", "day": 10, "time": "08:30"})
        assert compute_next_push_at(schedule, at(2024, 1, 1)) == at(2024, 1, 10, 8, 30)

    def test_no_days(self):
        assert compute_next_push_at(MonthlySchedule(days=[], time="09:00"), at(2024, 1, 1)) is None


class TestMonthlyInterval:
    """Every-N-months schedules anchored on a first date."""

    def test_anchor_in_future(self):
        schedule = MonthlyIntervalSchedule(interval=2, first_date="2024-01-15", time="09:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1)) == at(2024, 1, 15, 9)

    def test_stepping_through_a_year_hits_every_cycle(self):
        schedule = MonthlyIntervalSchedule(interval=2, first_date="2024-01-15", time="09:00")
        now = at(2024, 1, 1)
        seen = []
        while now < at(2025, 1, 1):
            result = compute_next_push_at(schedule, now)
            assert result is not None and result > now
            if seen:
                assert result >= seen[-1]
            if not seen or seen[-1] != result:
                seen.append(result)
            now += timedelta(days=1)

        assert seen == [
            at(2024, 1, 15, 9),
            at(2024, 3, 15, 9),
            at(2024, 5, 15, 9),
            at(2024, 7, 15, 9),
            at(2024, 9, 15, 9),
            at(2024, 11, 15, 9),
            at(2025, 1, 15, 9),
        ]

    def test_same_day_before_and_after_time(self):
        schedule = MonthlyIntervalSchedule(interval=2, first_date="2024-01-15", time="09:00")
        assert compute_next_push_at(schedule, at(2024, 3, 15, 8)) == at(2024, 3, 15, 9)
        assert compute_next_push_at(schedule, at(2024, 3, 15, 10)) == at(2024, 5, 15, 9)

    def test_month_end_is_clamped_without_drifting(self):
        schedule = MonthlyIntervalSchedule(interval=1, first_date="2024-01-31", time="09:00")
        assert compute_next_push_at(schedule, at(2024, 2, 1)) == at(2024, 2, 29, 9)
        assert compute_next_push_at(schedule, at(2024, 3, 1)) == at(2024, 3, 31, 9)

    def test_add_months(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)
        assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 15)

    def test_invalid(self):
        now = at(2024, 1, 1)
        assert compute_next_push_at(MonthlyIntervalSchedule(interval=0, first_date="2024-01-15", time="09:00"), now) is None
        assert compute_next_push_at(MonthlyIntervalSchedule(interval=1, first_date="not-a-date", time="09:00"), now) is None
        assert compute_next_push_at(MonthlyIntervalSchedule(interval=1, first_date="", time="09:00"), now) is None


class TestHourly:
    """Hourly schedules with optional hour window."""

    def test_later_this_hour(self):
        schedule = HourlySchedule(minute=30)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10, 10)) == at(2024, 1, 1, 10, 30)

    def test_next_hour(self):
        schedule = HourlySchedule(minute=30)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10, 40)) == at(2024, 1, 1, 11, 30)

    def test_after_window_moves_to_next_day_start(self):
        schedule = HourlySchedule(minute=30, start_hour=9, end_hour=17)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 17, 40)) == at(2024, 1, 2, 9, 30)

    def test_before_window_moves_to_start_same_day(self):
        schedule = HourlySchedule(minute=30, start_hour=9, end_hour=17)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 7)) == at(2024, 1, 1, 9, 30)

    def test_inside_window(self):
        schedule = HourlySchedule(minute=0, start_hour=9, end_hour=17)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 12, 5)) == at(2024, 1, 1, 13)

    def test_window_wrapping_midnight(self):
        schedule = HourlySchedule(minute=30, start_hour=22, end_hour=6)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 12, 40)) == at(2024, 1, 1, 22, 30)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 23, 40)) == at(2024, 1, 2, 0, 30)

    def test_invalid_minute(self):
        assert compute_next_push_at(HourlySchedule(minute=75), at(2024, 1, 1)) is None


class TestInterval:
    """Minute-interval schedules measured from the last push."""

    def test_from_last_push(self):
        schedule = IntervalSchedule(minutes=30)
        last = at(2024, 1, 1, 10)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10, 10), last) == at(2024, 1, 1, 10, 30)

    def test_overdue_counts_from_now(self):
        schedule = IntervalSchedule(minutes=30)
        last = at(2024, 1, 1, 8)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10, 10), last) == at(2024, 1, 1, 10, 40)

    def test_never_pushed(self):
        schedule = IntervalSchedule(minutes=15)
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10)) == at(2024, 1, 1, 10, 15)

    def test_zero_interval(self):
        assert compute_next_push_at(IntervalSchedule(minutes=0), at(2024, 1, 1)) is None


class TestOnceAndCustom:
    """One-time and explicit-date schedules."""

    def test_once_future(self):
        schedule = OnceSchedule(at="2024-01-02T08:00:00+08:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1)) == at(2024, 1, 2, 8)

    def test_once_naive_read_in_now_timezone(self):
        schedule = OnceSchedule(at="2024-01-02T08:00:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1)) == at(2024, 1, 2, 8)

    def test_once_passed(self):
        schedule = OnceSchedule(at="2024-01-01T08:00:00+08:00")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 9)) is None

    def test_once_invalid(self):
        assert compute_next_push_at(OnceSchedule(at="tomorrow-ish"), at(2024, 1, 1)) is None

    def test_custom_earliest_future(self):
        schedule = CustomSchedule(dates=[
            "2024-03-01T09:00:00+08:00",
            "2023-12-31T09:00:00+08:00",
            "bogus",
            "2024-02-01T09:00:00+08:00",
        ])
        assert compute_next_push_at(schedule, at(2024, 1, 1)) == at(2024, 2, 1, 9)

    def test_custom_all_past(self):
        schedule = CustomSchedule(dates=["2023-12-31T09:00:00+08:00"])
        assert compute_next_push_at(schedule, at(2024, 1, 1)) is None


class TestCron:
    """Cron schedules via croniter."""

    def test_five_part(self):
        schedule = CronSchedule(expression="0 9 * * *")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 10)) == at(2024, 1, 2, 9)

    def test_six_part_has_seconds_first(self):
        schedule = CronSchedule(expression="30 0 9 * * *")
        assert compute_next_push_at(schedule, at(2024, 1, 1, 8)) == at(2024, 1, 1, 9, 0, 30)

    def test_invalid(self):
        assert compute_next_push_at(CronSchedule(expression="not a cron"), at(2024, 1, 1)) is None
        assert compute_next_push_at(CronSchedule(expression="61 * * * *"), at(2024, 1, 1)) is None

    def test_validate(self):
        assert validate_cron_expression("*/5 * * * *")
        assert validate_cron_expression("0 */5 * * * *")
        assert not validate_cron_expression("* * *")
        assert not validate_cron_expression("99 * * * *")


class TestGeneral:
    """Properties shared by every schedule type."""

    SCHEDULES = [
        OnceSchedule(at="2024-06-01T12:00:00+08:00"),
        HourlySchedule(minute=15, start_hour=8, end_hour=20),
        DailySchedule(times=["07:00", "21:30"]),
        WeeklySchedule(days=[2, 4, 6], time="19:00"),
        MonthlySchedule(days=[1, 31], time="06:00"),
        MonthlyIntervalSchedule(interval=3, first_date="2023-11-30", time="10:00"),
        IntervalSchedule(minutes=45),
        WorkdaysSchedule(times=["09:00"]),
        WeekendSchedule(times=["11:00"]),
        CronSchedule(expression="*/20 8-18 * * 1-5"),
        CustomSchedule(dates=["2024-02-29T10:00:00+08:00", "2024-07-01T10:00:00+08:00"]),
    ]

    @pytest.mark.parametrize("schedule", SCHEDULES, ids=lambda s: s.kind)
    def test_result_is_after_now(self, schedule):
        now = at(2024, 1, 1)
        while now < at(2024, 3, 1):
            result = compute_next_push_at(schedule, now, now - timedelta(minutes=10))
            assert result is None or result > now
            now += timedelta(hours=7, minutes=13)

    def test_unknown_schedule(self):
        assert compute_next_push_at(None, at(2024, 1, 1)) is None
        assert compute_next_push_at("daily", at(2024, 1, 1)) is None

    def test_naive_now_is_utc(self):
        schedule = DailySchedule(times=["09:00"])
        naive = datetime(2024, 1, 1, 0, 0)
        result = compute_next_push_at(schedule, naive)
        assert result == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    def test_parse_clock(self):
        assert parse_clock("07:05") == (7, 5)
        assert parse_clock("7:5") == (7, 5)
        assert parse_clock("24:00") is None
        assert parse_clock("noon") is None

    def test_schedule_from_dict_unknown_type(self):
        with pytest.raises(ValueError):
            schedule_from_dict({"type": "fortnightly"})

    def test_task_with_unknown_schedule_is_kept_without_one(self):
        task = Task.from_dict({"id": "t1", "title": "x", "schedule": {"type": "fortnightly"}})
        assert task.schedule is None
        assert task.schedule_type == "unknown"

    def test_legacy_schedule_fields(self):
        task = Task.from_dict({
            "id": "t1",
            "deviceId": "d1",
            "scheduleType": "cron",
            "scheduleValue": "0 9 * * *",
        })
        assert task.device_ids == ["d1"]
        assert isinstance(task.schedule, CronSchedule)
        assert task.schedule.expression == "0 9 * * *"

    def test_human_labels(self):
        assert schedule_to_human(DailySchedule(times=["09:00"])) == "每天 09:00"
        assert schedule_to_human(WeeklySchedule(days=[1, 3], time="08:00")) == "每周一、周三 08:00"
        assert schedule_to_human(IntervalSchedule(minutes=30)) == "每隔 30 分钟"
        assert schedule_to_human(None) == "未知调度类型"
