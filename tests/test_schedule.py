from collections import namedtuple
from datetime import datetime
from datetime import timezone

import arrow
import pytest

import schedule
from schedule import ScheduleState

GateConfig = namedtuple("GateConfig", ["cron_schedule", "cron_schedule_state"])


class TestParseWindow:
    def test_any(self):
        w = schedule.parse_window("* *")
        assert w.hours is None
        assert w.weekdays is None
        assert all(w.contains(h, d) for h in range(24) for d in range(7))

    def test_ranges(self):
        w = schedule.parse_window("9-18 1-5")
        assert w.hours == frozenset(range(9, 19))
        assert w.weekdays == frozenset(range(1, 6))

    def test_lists_and_steps(self):
        assert schedule.parse_window("*/6 *").hours == frozenset([0, 6, 12, 18])
        assert schedule.parse_window("8,12-13,20/2 *").hours == frozenset([8, 12, 13, 20, 22])
        assert schedule.parse_window("0-11/4 *").hours == frozenset([0, 4, 8])

    def test_wrapping_range(self):
        w = schedule.parse_window("22-6 *")
        assert w.contains(23, 2)
        assert w.contains(3, 2)
        assert not w.contains(12, 2)

    def test_weekday_names(self):
        assert schedule.parse_window("* sat,sun").weekdays == frozenset([6, 0])
        assert schedule.parse_window("* Mon-Fri").weekdays == frozenset(range(1, 6))
        assert schedule.parse_window("* fri-mon").weekdays == frozenset([5, 6, 0, 1])

    def test_seven_is_sunday(self):
        assert schedule.parse_window("* 7").weekdays == frozenset([0])
        assert schedule.parse_window("* 5-7").weekdays == frozenset([5, 6, 0])

    def test_extra_spaces(self):
        assert schedule.parse_window("  9-18   1-5 ").spec == "9-18 1-5"
        assert str(schedule.parse_window("9-18 1-5")) == "9-18 1-5"

    @pytest.mark.parametrize("spec", ["", "*", "9-18", "9-18 1-5 *", "24 *", "* 8", "a b", "-1 *",
        "*/0 *", "1,,2 *", "* mon-", None, 5])
    def test_invalid(self, spec):
        with pytest.raises(ValueError):
            schedule.parse_window(spec)


class TestPermits:
    def test_office_hours(self):
        w = schedule.parse_window("9-18 1-5")
        assert schedule.permits((10, 3), w, ScheduleState.ON) is True
        assert schedule.permits((20, 3), w, ScheduleState.ON) is False
        assert schedule.permits((10, 0), w, ScheduleState.ON) is False

    def test_state_flip_negates(self):
        windows = [schedule.parse_window(s) for s in ["* *", "9-18 1-5", "22-6 sat,sun", "0 0", "*/3 2"]]
        for w in windows:
            for hour in range(24):
                for weekday in range(7):
                    now = (hour, weekday)
                    assert schedule.permits(now, w, ScheduleState.OFF) == (not schedule.permits(now, w, ScheduleState.ON))

    def test_off_outside_window(self):
        w = schedule.parse_window("9-18 1-5")
        assert schedule.permits((20, 3), w, ScheduleState.OFF) is True
        assert schedule.permits((10, 3), w, ScheduleState.OFF) is False


class TestMoment:
    def test_datetime(self):
        # 2024-01-03 is a Wednesday
        assert schedule.moment(datetime(2024, 1, 3, 10, 30, tzinfo=timezone.utc)) == (10, 3)
        # 2024-01-07 is a Sunday
        assert schedule.moment(datetime(2024, 1, 7, 23, 59)) == (23, 0)

    def test_arrow(self):
        assert schedule.moment(arrow.get("2024-01-06T05:00:00+00:00")) == (5, 6)

    def test_local_moment(self):
        hour, weekday = schedule.local_moment("Europe/Paris")
        assert 0 <= hour <= 23
        assert 0 <= weekday <= 6


class TestGroupPermits:
    def setup_method(self):
        self.config = GateConfig(schedule.parse_window("9-18 1-5"), ScheduleState.ON)

    def test_global_values(self):
        assert schedule.group_permits({}, self.config, (10, 3))
        assert not schedule.group_permits({}, self.config, (20, 3))

    def test_schedule_override(self):
        tags = {schedule.OVERRIDE_SCHEDULE_TAG: "18-23 *"}
        assert schedule.group_permits(tags, self.config, (20, 3))
        assert not schedule.group_permits(tags, self.config, (10, 3))

    def test_state_override(self):
        tags = {schedule.OVERRIDE_STATE_TAG: "off"}
        assert schedule.group_permits(tags, self.config, (20, 3))
        assert not schedule.group_permits(tags, self.config, (10, 3))

    def test_invalid_overrides_fall_back(self):
        tags = {schedule.OVERRIDE_SCHEDULE_TAG: "whenever", schedule.OVERRIDE_STATE_TAG: "sometimes"}
        assert schedule.group_permits(tags, self.config, (10, 3))
        assert not schedule.group_permits(tags, self.config, (20, 3))
