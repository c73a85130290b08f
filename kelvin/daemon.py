"""
Kelvin daemon.

Each scheduled light runs in its own task and is reconciled every tick. A
slow task recomputes intervals and targets and keeps the Kelvin scenes in
sync, a daily task rebuilds all schedules after midnight.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Callable, Dict, List, Optional

import aiohttp

from .config import Configuration
from .exceptions import ConfigurationError, DeviceError
from .gateway import BridgeGateway, DeviceDescriptor
from .hue import HueBridge
from .light import Light
from .location import Location, detect_location
from .scenes import update_scenes

logger = logging.getLogger(__name__)

TICK_SECONDS = float(os.getenv("KELVIN_TICK_SECONDS", "1"))
SLOW_TICK_SECONDS = float(os.getenv("KELVIN_SLOW_TICK_SECONDS", "60"))


@dataclass
class AppContext:
    """Everything the light tasks share. Read-only while running."""
    configuration: Configuration
    location: Location
    bridge: BridgeGateway
    tick: float = TICK_SECONDS
    slow_tick: float = SLOW_TICK_SECONDS


async def resolve_location(configuration: Configuration, session: aiohttp.ClientSession) -> Location:
    """Return the configured location, detecting (and storing) it if unset."""
    if configuration.location.is_configured:
        return Location(
            configuration.location.latitude,
            configuration.location.longitude,
            configuration.location.timezone,
        )

    logger.info("🌍 Location not configured. Detecting location by IP...")
    location = await detect_location(session)
    configuration.location.latitude = location.latitude
    configuration.location.longitude = location.longitude
    configuration.location.timezone = location.timezone
    return location


async def create_context(configuration: Configuration, session: aiohttp.ClientSession) -> AppContext:
    """Connect the configuration to the bridge and the location."""
    if not configuration.bridge.ip or not configuration.bridge.username:
        raise ConfigurationError(
            "Bridge not configured. Set bridge.ip and bridge.username in "
            f"{configuration.path} (see the Hue API documentation on creating a user)."
        )

    location = await resolve_location(configuration, session)
    bridge = HueBridge(session, configuration.bridge.ip, configuration.bridge.username)
    configuration.write()
    return AppContext(configuration=configuration, location=location, bridge=bridge)


def associate_unassigned_lights(configuration: Configuration, devices: List[DeviceDescriptor]) -> bool:
    """Assign all lights to the first schedule if no schedule has any light.

    Returns True if the configuration was changed.
    """
    if not configuration.schedules or not devices:
        return False
    if any(schedule.associated_device_ids for schedule in configuration.schedules):
        return False
    schedule = configuration.schedules[0]
    schedule.associated_device_ids = [device.id for device in devices]
    logger.info(f"⚙ Associated all {len(devices)} lights with schedule '{schedule.name}'")
    return True


def format_light_table(devices: List[DeviceDescriptor], configuration: Configuration) -> str:
    """Render the devices as a plain text table."""
    rows = [("ID", "Name", "Type", "Dimmable", "Color", "Min K", "Schedule")]
    for device in devices:
        schedule = next(
            (s.name for s in configuration.schedules if device.id in s.associated_device_ids),
            "-",
        )
        rows.append((
            str(device.id),
            device.name,
            device.type.value,
            "yes" if device.dimmable else "no",
            "xy" if device.supports_xy_color else ("ct" if device.supports_color_temperature else "no"),
            str(device.minimum_color_temperature) if device.supports_color else "-",
            schedule,
        ))
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    lines = ["  ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)).rstrip() for row in rows]
    lines.insert(1, "  ".join("-" * w for w in widths))
    return "\n".join(lines)


def seconds_until_midnight(now: datetime) -> float:
    midnight = datetime.combine(now.date() + timedelta(days=1), time(0, 0, 0), tzinfo=now.tzinfo)
    return max(0.0, (midnight - now).total_seconds())


class Daemon:
    """Owns the lights and their tasks."""

    def __init__(self, context: AppContext, clock: Optional[Callable[[], datetime]] = None):
        self.context = context
        self.clock = clock or (lambda: datetime.now(context.location.tzinfo))
        self.lights: Dict[int, Light] = {}
        self.tasks: List[asyncio.Task] = []

    def now(self) -> datetime:
        return self.clock()

    async def discover_lights(self) -> Dict[int, Light]:
        """Create a Light for every device on the bridge."""
        configuration = self.context.configuration
        devices = await self.context.bridge.list_devices()
        if associate_unassigned_lights(configuration, devices):
            configuration.write()

        logger.info(f"💡 Found {len(devices)} lights:\n{format_light_table(devices, configuration)}")

        now = self.now()
        for descriptor in devices:
            light = Light(self.context.bridge.device(descriptor.id), configuration, self.context.location)
            light.update_schedule(now)
            if light.scheduled:
                light.update_target(now)
            self.lights[descriptor.id] = light
        return self.lights

    async def run_light(self, light: Light) -> None:
        """Reconcile a single light forever."""
        logger.debug(f"💡 Starting cyclic update for {light.name}")
        while True:
            try:
                await light.update(self.now())
            except DeviceError as e:
                logger.warning(f"💡 Light {light.name}: {e}")
            await asyncio.sleep(self.context.tick)

    async def refresh_targets(self) -> None:
        now = self.now()
        for light in self.lights.values():
            if light.scheduled:
                light.update_target(now)
        await update_scenes(self.context.bridge, self.context.configuration, self.context.location, now)

    async def run_slow(self) -> None:
        """Recompute intervals and targets, sync scenes."""
        while True:
            await asyncio.sleep(self.context.slow_tick)
            await self.refresh_targets()

    async def rebuild_schedules(self) -> None:
        now = self.now()
        logger.info(f"📅 New day {now.strftime('%A %B %d %Y')}. Rebuilding schedules...")
        for light in self.lights.values():
            if light.scheduled:
                light.update_schedule(now)
                light.update_target(now)

    async def run_daily(self) -> None:
        """Rebuild all schedules when the day turns over."""
        while True:
            # a second past midnight so the new day has begun in any case
            await asyncio.sleep(seconds_until_midnight(self.now()) + 1)
            await self.rebuild_schedules()

    def light(self, light_id: int) -> Light:
        try:
            return self.lights[light_id]
        except KeyError:
            raise DeviceError(f"Unknown light {light_id}") from None

    def set_automatic(self, light_id: int, enabled: bool) -> None:
        self.light(light_id).set_automatic(enabled, self.now())

    async def activate(self, light_id: int) -> bool:
        return await self.light(light_id).activate(self.now())

    async def run(self) -> None:
        """Run until cancelled or a fatal error occurs."""
        await self.discover_lights()
        await update_scenes(self.context.bridge, self.context.configuration, self.context.location, self.now())

        self.tasks = [
            asyncio.create_task(self.run_light(light), name=f"light-{light.id}")
            for light in self.lights.values()
            if light.scheduled
        ]
        self.tasks.append(asyncio.create_task(self.run_slow(), name="slow-tick"))
        self.tasks.append(asyncio.create_task(self.run_daily(), name="daily"))
        logger.info(f"Kelvin running with {len(self.tasks) - 2} scheduled lights")

        try:
            done, _ = await asyncio.wait(self.tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                # re-raises the fatal error
                task.result()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []


async def run_daemon(configuration: Configuration) -> None:
    async with aiohttp.ClientSession() as session:
        context = await create_context(configuration, session)
        await Daemon(context).run()
