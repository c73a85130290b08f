"""Interval resolver.

Finds the pair of time points bracketing a timestamp within a day's schedule
and interpolates the light state between them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Tuple

from .colors import temperature_to_chromaticity
from .exceptions import IntervalConsistencyError, StaleScheduleError
from .lightstate import LightState
from .schedule import Schedule, TimePoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Interval:
    """Two adjacent time points with ``start.time <= end.time``."""

    start: TimePoint
    end: TimePoint

    def __str__(self) -> str:
        return f"{self.start} -> {self.end}"


def current_interval(schedule: Schedule, now: datetime) -> Interval:
    """Return the interval of ``schedule`` that contains ``now``.

    Raises:
        StaleScheduleError: ``now`` lies outside the schedule's day.
        IntervalConsistencyError: No bracketing pair could be found.
    """
    start_of_day = datetime.combine(schedule.day, time(0, 0, 0), tzinfo=schedule.end_of_day.tzinfo)
    next_day = start_of_day + timedelta(days=1)
    if now >= next_day or now < start_of_day:
        raise StaleScheduleError(
            f"No interval for {now.isoformat()}: schedule '{schedule.name}' ends {schedule.end_of_day.isoformat()}"
        )
    # the fraction of a second after end-of-day still belongs to this day
    now = min(now, schedule.end_of_day)

    if schedule.sunrise.time <= now < schedule.sunset.time:
        return Interval(schedule.sunrise, schedule.sunset)

    if now < schedule.sunrise.time:
        sentinel = TimePoint(start_of_day)
        start, end = _bracket(now, [sentinel] + list(schedule.before_sunrise) + [schedule.sunrise])
        # the day starts with the values of its first real time point
        if start is sentinel:
            start = replace(end, time=sentinel.time)
        return Interval(start, end)

    sentinel = TimePoint(schedule.end_of_day)
    start, end = _bracket(now, [schedule.sunset] + list(schedule.after_sunset) + [sentinel])
    # the day ends with the values of its last real time point
    if end is sentinel:
        end = replace(start, time=sentinel.time)
    return Interval(start, end)


def _bracket(now: datetime, candidates: List[TimePoint]):
    ordered = sorted(candidates, key=lambda p: p.time)

    end: Optional[TimePoint] = next((p for p in ordered if p.time > now), None)
    if end is None:
        same = [p for p in ordered if p.time == now]
        end = same[-1] if same else None

    start: Optional[TimePoint] = None
    for candidate in ordered:
        if candidate is not end and candidate.time <= now:
            start = candidate

    if start is None or end is None:
        raise IntervalConsistencyError(
            f"Could not bracket {now.isoformat()} with candidates {[str(c) for c in candidates]}"
        )
    return start, end


def _interpolate(start: Optional[int], end: Optional[int], progress: float) -> Optional[int]:
    if start is None:
        return end
    if end is None:
        return start
    return int(start + progress * (end - start))


def calculate_light_state_in_interval(interval: Interval, timestamp: datetime) -> LightState:
    """Linearly interpolate the light state at ``timestamp``.

    Outside the interval the nearest endpoint's values are returned. A
    channel unset on one endpoint takes the other endpoint's value.
    """
    start, end = interval.start, interval.end
    # elapsed time, not wall-clock time, across daylight saving changes
    moment = timestamp.astimezone(timezone.utc)
    start_time = start.time.astimezone(timezone.utc)
    end_time = end.time.astimezone(timezone.utc)

    if moment <= start_time:
        return start.light_state
    if moment >= end_time:
        return end.light_state

    progress = (moment - start_time).total_seconds() / (end_time - start_time).total_seconds()
    color_temperature = _interpolate(start.color_temperature, end.color_temperature, progress)
    brightness = _interpolate(start.brightness, end.brightness, progress)

    return LightState(color_temperature, temperature_to_chromaticity(color_temperature), brightness)


def preview_day(schedule: Schedule, step: timedelta = timedelta(minutes=30)) -> List[Tuple[datetime, LightState]]:
    """Sample the light state over the whole day of ``schedule``."""
    samples = []
    timestamp = datetime.combine(schedule.day, time(0, 0, 0), tzinfo=schedule.end_of_day.tzinfo)
    while timestamp <= schedule.end_of_day:
        interval = current_interval(schedule, timestamp)
        samples.append((timestamp, calculate_light_state_in_interval(interval, timestamp)))
        timestamp += step
    return samples
