""" Time window gating destructive actions: "<hours> <weekdays>", ex: "9-18 1-5", "22-6 *", "* sat,sun".
"""
from collections import namedtuple
from enum import Enum

import arrow

import sslog
log = sslog.logger(__name__)

OVERRIDE_SCHEDULE_TAG = "spotswap_cron_schedule"
OVERRIDE_STATE_TAG    = "spotswap_cron_schedule_state"

WEEKDAY_NAMES = {"sun": 0, "mon": 1, "tue": 2, "wed": 3, "thu": 4, "fri": 5, "sat": 6}


class ScheduleState(Enum):
    ON  = "on"
    OFF = "off"


class ScheduleWindow(namedtuple("ScheduleWindow", ["spec", "hours", "weekdays"])):
    """ Parsed schedule. 'hours' and 'weekdays' are frozensets, or None for "any".
    """
    __slots__ = ()

    def contains(self, hour, weekday):
        if self.hours is not None and hour not in self.hours:
            return False
        if self.weekdays is not None and weekday not in self.weekdays:
            return False
        return True

    def __str__(self):
        return self.spec


def _parse_value(text, names):
    text = text.strip().lower()
    if names is not None and text in names:
        return names[text]
    return int(text)

def _parse_component(text, lo, hi, max_value, names=None):
    if text == "*":
        return None
    values = set()
    for item in text.split(","):
        if item == "":
            raise ValueError("Empty item in '%s'" % text)
        step        = 1
        open_ended  = False
        if "/" in item:
            item, s = item.split("/", 1)
            step    = int(s)
            if step <= 0:
                raise ValueError("Invalid step '%s'" % s)
            open_ended = True
        if item == "*":
            start, end = lo, hi
        elif "-" in item:
            a, b       = item.split("-", 1)
            start, end = _parse_value(a, names), _parse_value(b, names)
        else:
            start = _parse_value(item, names)
            end   = hi if open_ended else start
        for v in (start, end):
            if v < lo or v > max_value:
                raise ValueError("Value %d out of range [%d-%d]" % (v, lo, max_value))
        if start <= end:
            expanded = list(range(start, end + 1))
        else:
            expanded = list(range(start, hi + 1)) + list(range(lo, end + 1))
        values.update(expanded[::step])
    return frozenset(values)

def parse_window(spec):
    """ Parse a "<hours> <weekdays>" schedule. Raises ValueError on bad format.
    """
    if not isinstance(spec, str):
        raise ValueError("Schedule must be a string (got %r)" % (spec,))
    parts = spec.split()
    if len(parts) != 2:
        raise ValueError("Schedule '%s' must contain exactly 2 space separated fields: <hours> <weekdays>" % spec)
    hours    = _parse_component(parts[0], 0, 23, 23)
    weekdays = _parse_component(parts[1], 0, 6, 7, names=WEEKDAY_NAMES)
    if weekdays is not None:
        weekdays = frozenset(d % 7 for d in weekdays)
    return ScheduleWindow(" ".join(parts), hours, weekdays)


def moment(dt):
    """ Convert a datetime (or Arrow) value to an (hour, weekday) pair, Sunday being 0.
    """
    return (dt.hour, dt.isoweekday() % 7)

def local_moment(tz="UTC"):
    return moment(arrow.utcnow().to(tz))


def permits(now, window, state):
    inside = window.contains(*now)
    if state == ScheduleState.ON:
        return inside
    return not inside

def group_permits(tags, config, now):
    """ Evaluate the gate for one elastic group.

    Group tags override the global schedule and state; an invalid override is reported
    and the global value is used instead.
    """
    window = config.cron_schedule
    state  = config.cron_schedule_state
    if OVERRIDE_SCHEDULE_TAG in tags:
        try:
            window = parse_window(tags[OVERRIDE_SCHEDULE_TAG])
        except ValueError as e:
            log.warning("Ignoring invalid tag %s='%s' : %s" % (OVERRIDE_SCHEDULE_TAG, tags[OVERRIDE_SCHEDULE_TAG], e))
    if OVERRIDE_STATE_TAG in tags:
        try:
            state = ScheduleState(tags[OVERRIDE_STATE_TAG].strip())
        except ValueError:
            log.warning("Ignoring invalid tag %s='%s' (expected on|off)" % (OVERRIDE_STATE_TAG, tags[OVERRIDE_STATE_TAG]))
    return permits(now, window, state)
