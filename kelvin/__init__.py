from .config import Configuration, LightSchedule, TimedColorTemperature, initialize_configuration
from .exceptions import (
    ConfigurationError,
    DeviceError,
    IntervalConsistencyError,
    KelvinError,
    NotAssociatedError,
    StaleScheduleError,
)
from .interval import Interval, calculate_light_state_in_interval, current_interval
from .light import Light, LightStatus
from .lightstate import LightState
from .location import Location
from .schedule import Schedule, TimePoint, build_schedule

__version__ = "1.0.0"

__all__ = [
    "Configuration",
    "LightSchedule",
    "TimedColorTemperature",
    "initialize_configuration",
    "ConfigurationError",
    "DeviceError",
    "IntervalConsistencyError",
    "KelvinError",
    "NotAssociatedError",
    "StaleScheduleError",
    "Interval",
    "calculate_light_state_in_interval",
    "current_interval",
    "Light",
    "LightStatus",
    "LightState",
    "Location",
    "Schedule",
    "TimePoint",
    "build_schedule",
]
