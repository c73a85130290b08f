"""Schedule builder.

A Schedule holds all relevant time points of one calendar day: sunrise and
sunset with the schedule's default values plus the configured time points
before sunrise and after sunset. Light states are calculated from the
intervals between them (see ``kelvin.interval``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from datetime import tzinfo as TimeZone
from typing import List, Optional

from .config import LightSchedule, TimedColorTemperature
from .lightstate import LightState
from .location import Location

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59)


@dataclass(frozen=True)
class TimePoint:
    """A wall clock instant with the light configuration to reach at it.

    ``None`` for color temperature or brightness means the channel is not
    controlled at this point.
    """

    time: datetime
    color_temperature: Optional[int] = None
    brightness: Optional[int] = None

    @property
    def light_state(self) -> LightState:
        return LightState.from_values(self.color_temperature, self.brightness)

    def __str__(self) -> str:
        return f"{self.time.strftime('%H:%M')} ({self.light_state})"


@dataclass
class Schedule:
    """All time points of one day for the lights sharing a schedule."""

    name: str
    day: date
    end_of_day: datetime
    sunrise: TimePoint
    sunset: TimePoint
    before_sunrise: List[TimePoint] = field(default_factory=list)
    after_sunset: List[TimePoint] = field(default_factory=list)
    enable_when_lights_appear: bool = True

    def covers(self, timestamp: datetime) -> bool:
        """Whether the schedule was built for the calendar day of ``timestamp``."""
        return timestamp.astimezone(self.end_of_day.tzinfo).date() == self.day

    def time_points(self) -> List[TimePoint]:
        """All configured time points of the day in chronological order."""
        return sorted(self.before_sunrise + [self.sunrise, self.sunset] + self.after_sunset, key=lambda p: p.time)


def parse_time_point(entry: TimedColorTemperature, day: date, tz: TimeZone) -> TimePoint:
    """Parse an "HH:MM" entry against the given calendar day.

    Raises:
        ValueError: If the time cannot be parsed.
    """
    try:
        parsed = datetime.strptime(entry.time.strip(), "%H:%M")
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time '{entry.time}' in schedule; expected HH:MM") from None
    return TimePoint(
        datetime.combine(day, parsed.time(), tzinfo=tz),
        entry.color_temperature,
        entry.brightness,
    )


def _parse_time_points(entries: List[TimedColorTemperature], day: date, tz: TimeZone, name: str) -> List[TimePoint]:
    points = []
    for entry in entries:
        try:
            points.append(parse_time_point(entry, day, tz))
        except ValueError as e:
            logger.warning(f"Schedule '{name}': {e}. Ignoring entry.")
    return sorted(points, key=lambda p: p.time)


def build_schedule(light_schedule: LightSchedule, location: Location, day: date) -> Schedule:
    """Compute the time points of ``day`` for a schedule configuration."""
    tz = location.tzinfo
    sunrise, sunset = location.solar_events(day)

    schedule = Schedule(
        name=light_schedule.name,
        day=day,
        end_of_day=datetime.combine(day, END_OF_DAY, tzinfo=tz),
        sunrise=TimePoint(
            sunrise,
            light_schedule.default_color_temperature,
            light_schedule.default_brightness,
        ),
        sunset=TimePoint(
            sunset,
            light_schedule.default_color_temperature,
            light_schedule.default_brightness,
        ),
        before_sunrise=_parse_time_points(light_schedule.before_sunrise, day, tz, light_schedule.name),
        after_sunset=_parse_time_points(light_schedule.after_sunset, day, tz, light_schedule.name),
        enable_when_lights_appear=light_schedule.enable_when_lights_appear,
    )

    logger.debug(
        f"Schedule '{schedule.name}' for {day.strftime('%A %B %d %Y')}: "
        f"sunrise {sunrise.strftime('%H:%M')}, sunset {sunset.strftime('%H:%M')}, "
        f"{len(schedule.before_sunrise)} before sunrise, {len(schedule.after_sunset)} after sunset"
    )
    return schedule
