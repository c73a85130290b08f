"""Color mapping between user facing units and the bridge's device units.

User facing values are color temperatures in Kelvin and brightness in percent.
The bridge speaks mired (``1e6 / Kelvin``), a brightness scale of 0-254 and
CIE 1931 xy chromaticity for lights supporting full color.

``None`` is used for "unset" throughout: an unset input always maps to an
unset output.
"""

from __future__ import annotations

from typing import Optional, Tuple

# Color temperature range (Kelvin)
MIN_COLOR_TEMPERATURE = 2000
MAX_COLOR_TEMPERATURE = 6500

# Device brightness range
MAX_DEVICE_BRIGHTNESS = 254

Chromaticity = Tuple[float, float]


def clamp_temperature(kelvin: int, minimum: int = MIN_COLOR_TEMPERATURE) -> int:
    """Clamp a color temperature to [minimum, 6500]."""
    return max(minimum, min(MAX_COLOR_TEMPERATURE, kelvin))


def temperature_to_device_units(
    kelvin: Optional[int], minimum: int = MIN_COLOR_TEMPERATURE
) -> Optional[int]:
    """Convert Kelvin to mired, clamping to the supported range first."""
    if kelvin is None:
        return None
    return round(1_000_000 / clamp_temperature(kelvin, minimum))


def device_units_to_temperature(
    mired: Optional[int], minimum: int = MIN_COLOR_TEMPERATURE
) -> Optional[int]:
    """Convert mired back to Kelvin, clamped to the supported range.

    The bridge reports 0 for lights without a color temperature, which is
    treated as unset.
    """
    if not mired:
        return None
    return clamp_temperature(round(1_000_000 / mired), minimum)


def brightness_to_device_units(percent: Optional[int]) -> Optional[int]:
    """Convert a brightness percentage (0-100) to the device scale (0-254)."""
    if percent is None:
        return None
    percent = max(0, min(100, percent))
    return round(percent / 100 * MAX_DEVICE_BRIGHTNESS)


def device_units_to_brightness(units: Optional[int]) -> Optional[int]:
    """Convert a device brightness (0-254) back to percent."""
    if units is None:
        return None
    units = max(0, min(MAX_DEVICE_BRIGHTNESS, units))
    return round(units / MAX_DEVICE_BRIGHTNESS * 100)


def temperature_to_chromaticity(kelvin: Optional[int]) -> Optional[Chromaticity]:
    """Convert color temperature to CIE 1931 x,y using Krystek polynomials.

    The result is rounded to four decimals, the precision the bridge accepts.
    """
    if kelvin is None:
        return None

    T = max(1000, min(kelvin, 25000))
    invT = 1000.0 / T

    if T <= 4000:
        x = (-0.2661239 * invT**3
             - 0.2343589 * invT**2
             + 0.8776956 * invT
             + 0.179910)
    else:
        x = (-3.0258469 * invT**3
             + 2.1070379 * invT**2
             + 0.2226347 * invT
             + 0.240390)

    if T <= 2222:
        y = (-1.1063814 * x**3
             - 1.34811020 * x**2
             + 2.18555832 * x
             - 0.20219683)
    elif T <= 4000:
        y = (-0.9549476 * x**3
             - 1.37418593 * x**2
             + 2.09137015 * x
             - 0.16748867)
    else:
        y = (3.0817580 * x**3
             - 5.87338670 * x**2
             + 3.75112997 * x
             - 0.37001483)

    return (round(x, 4), round(y, 4))
