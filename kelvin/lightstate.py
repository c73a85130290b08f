"""Light state value type.

A LightState is either a target computed from a schedule or the state
observed on a device. Each channel is optional: ``None`` means "ignore this
channel", it is never considered changed and never written to a device.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple

from .colors import (
    MAX_COLOR_TEMPERATURE,
    MIN_COLOR_TEMPERATURE,
    Chromaticity,
    brightness_to_device_units,
    device_units_to_brightness,
    device_units_to_temperature,
    temperature_to_chromaticity,
    temperature_to_device_units,
)

logger = logging.getLogger(__name__)

# Tolerances used by LightState.equals
TEMPERATURE_TOLERANCE = 5  # Kelvin
CHROMATICITY_TOLERANCE = 0.001  # Euclidean distance in xy space
BRIGHTNESS_TOLERANCE = 3  # percent


@dataclass(frozen=True)
class LightState:
    """Color temperature (Kelvin), chromaticity (x, y) and brightness (%)."""

    color_temperature: Optional[int] = None
    color: Optional[Chromaticity] = None
    brightness: Optional[int] = None

    @classmethod
    def from_values(cls, color_temperature: Optional[int], brightness: Optional[int]) -> "LightState":
        """Build a state from user facing units, deriving the chromaticity."""
        return cls(color_temperature, temperature_to_chromaticity(color_temperature), brightness)

    @classmethod
    def from_device_values(
        cls,
        mired: Optional[int],
        xy: Optional[Sequence[float]],
        brightness_units: Optional[int],
        minimum_color_temperature: int = MIN_COLOR_TEMPERATURE,
    ) -> "LightState":
        """Build a state from the raw values reported by a device.

        Devices report xy with more noise than they accept, so it is rounded
        to three decimals. When no usable xy is reported it is derived from
        the color temperature to keep both encodings consistent.
        """
        color_temperature = device_units_to_temperature(mired, minimum_color_temperature)
        if xy is not None and len(xy) == 2:
            color: Optional[Chromaticity] = (round(float(xy[0]), 3), round(float(xy[1]), 3))
        else:
            color = temperature_to_chromaticity(color_temperature)
        return cls(color_temperature, color, device_units_to_brightness(brightness_units))

    def to_device_values(
        self, minimum_color_temperature: int = MIN_COLOR_TEMPERATURE
    ) -> Tuple[Optional[int], Optional[Chromaticity], Optional[int]]:
        """Return (mired, xy, brightness units) for this state."""
        return (
            temperature_to_device_units(self.color_temperature, minimum_color_temperature),
            self.color,
            brightness_to_device_units(self.brightness),
        )

    def masked_like(self, other: "LightState") -> "LightState":
        """Return a copy without the channels ``other`` leaves unset."""
        return LightState(
            self.color_temperature if other.color_temperature is not None else None,
            self.color if other.color is not None else None,
            self.brightness if other.brightness is not None else None,
        )

    def with_minimum_temperature(self, minimum: int) -> "LightState":
        """Raise the color temperature to a device's minimum capability."""
        if self.color_temperature is None or self.color_temperature >= minimum:
            return self
        return replace(self, color_temperature=minimum, color=temperature_to_chromaticity(minimum))

    def equals(self, other: "LightState") -> bool:
        """Approximate equality tolerant of device rounding noise.

        Two states are equal if color and brightness match, or if color
        temperature and brightness match. Color is checked first because the
        color mode a device reports is not reliable. A color channel that is
        unset (or zero) on either side has no say and leaves the decision to
        the color temperature.
        """
        same_brightness = _same_int(self.brightness, other.brightness, BRIGHTNESS_TOLERANCE)
        if not same_brightness:
            return False
        if _same_color(self.color, other.color):
            return True
        return _same_int(self.color_temperature, other.color_temperature, TEMPERATURE_TOLERANCE)

    def is_valid(self, minimum_color_temperature: int = MIN_COLOR_TEMPERATURE) -> bool:
        if self.brightness is not None and not 0 <= self.brightness <= 100:
            return False
        if self.color_temperature is not None and not (
            minimum_color_temperature <= self.color_temperature <= MAX_COLOR_TEMPERATURE
        ):
            return False
        # Both encodings describe the same target
        return (self.color_temperature is None) == (self.color is None)

    def __str__(self) -> str:
        temperature = "-" if self.color_temperature is None else f"{self.color_temperature}K"
        brightness = "-" if self.brightness is None else f"{self.brightness}%"
        return f"{temperature} at {brightness}"


def _same_int(a: Optional[int], b: Optional[int], tolerance: int) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(a - b) < tolerance


def _color_unset(color: Optional[Chromaticity]) -> bool:
    return color is None or (color[0] == 0 and color[1] == 0)


def _same_color(a: Optional[Chromaticity], b: Optional[Chromaticity]) -> bool:
    if _color_unset(a) or _color_unset(b):
        return False
    return math.hypot(a[0] - b[0], a[1] - b[1]) < CHROMATICITY_TOLERANCE
