"""Exceptions module."""


class KelvinError(Exception):
    """Base class for all errors raised by Kelvin."""


class ConfigurationError(KelvinError):
    """Raised when the configuration file cannot be read or is invalid."""


class NotAssociatedError(KelvinError, LookupError):
    """Raised when a device is not associated with any schedule."""


class StaleScheduleError(KelvinError):
    """Raised when a schedule is queried for a time after its end of day."""


class DeviceError(KelvinError):
    """Raised when reading from or writing to a device fails."""


class IntervalConsistencyError(AssertionError):
    """Raised when no bracketing pair of time points can be found.

    This means the candidate set of a schedule was not seeded correctly and is
    never recovered from.
    """
