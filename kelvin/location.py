"""Geographic location and solar event calculation.

Sunrise and sunset are calculated with astral. If no location is configured,
Kelvin detects one by looking up the public IP address.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, time
from datetime import tzinfo as TimeZone
from typing import Optional, Tuple

import aiohttp
from astral import LocationInfo
from astral.sun import elevation, noon, sun
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

GEOLOCATION_URL = os.getenv("KELVIN_GEOLOCATION_URL", "https://ipapi.co/json/")


@dataclass(frozen=True)
class Location:
    """A position on earth for which sunrise and sunset can be calculated."""

    latitude: float
    longitude: float
    timezone: Optional[str] = None

    @property
    def tzinfo(self) -> TimeZone:
        """Timezone of the location, falling back to the system's local one."""
        name = self.timezone or os.getenv("TZ") or None
        if name:
            try:
                return ZoneInfo(name)
            except (ZoneInfoNotFoundError, ValueError):
                logger.warning(f"🌍 Unknown timezone '{name}', falling back to system local")
        return datetime.now().astimezone().tzinfo

    @property
    def observer(self):
        info = LocationInfo(latitude=self.latitude, longitude=self.longitude)
        return info.observer

    def solar_events(self, day: date) -> Tuple[datetime, datetime]:
        """Return (sunrise, sunset) for ``day`` in the location's timezone.

        During polar night the sun never rises and both events collapse onto
        solar noon. During polar day the whole calendar day is daylight.
        """
        tz = self.tzinfo
        try:
            events = sun(self.observer, date=day, tzinfo=tz)
            return events["sunrise"], events["sunset"]
        except ValueError:
            solar_noon = noon(self.observer, date=day, tzinfo=tz)
            if elevation(self.observer, solar_noon) > 0:
                logger.debug(f"Polar day on {day} at {self.latitude}, {self.longitude}")
                return (
                    datetime.combine(day, time(0, 0, 0), tzinfo=tz),
                    datetime.combine(day, time(23, 59, 59), tzinfo=tz),
                )
            logger.debug(f"Polar night on {day} at {self.latitude}, {self.longitude}")
            return solar_noon, solar_noon

    def sunrise(self, day: date) -> datetime:
        return self.solar_events(day)[0]

    def sunset(self, day: date) -> datetime:
        return self.solar_events(day)[1]


async def detect_location(session: aiohttp.ClientSession, url: str = GEOLOCATION_URL) -> Location:
    """Detect the location of this system by its public IP address."""
    try:
        async with session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as response:
            response.raise_for_status()
            data = await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ConfigurationError(f"Location not configured and detection by IP failed: {e}") from e

    try:
        location = Location(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            timezone=data.get("timezone") or data.get("time_zone"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(f"Unexpected geolocation response: {data}") from e

    logger.info(
        f"🌍 Detected location: {data.get('city', '?')}, {data.get('country_name', '?')} "
        f"({location.latitude}, {location.longitude})"
    )
    return location
