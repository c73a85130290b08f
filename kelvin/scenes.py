"""
Kelvin scene synchronization.

Bridge scenes whose name contains "kelvin" and the name of a schedule are
kept at that schedule's current target. Activating such a scene from any app
or switch sets lights to exactly the state Kelvin would choose, which the
reconciliation engine recognizes and takes over from.
"""

import logging
from datetime import datetime
from typing import List, Optional

from .config import Configuration, LightSchedule
from .exceptions import DeviceError, StaleScheduleError
from .gateway import BridgeGateway, Scene
from .interval import calculate_light_state_in_interval, current_interval
from .lightstate import LightState
from .location import Location
from .schedule import build_schedule

logger = logging.getLogger(__name__)

SCENE_MARKER = "kelvin"


def schedules_for_scene(scene: Scene, configuration: Configuration) -> List[LightSchedule]:
    """Return the schedules a scene belongs to, based on its name."""
    name = scene.name.lower()
    if SCENE_MARKER not in name:
        return []
    return [schedule for schedule in configuration.schedules if schedule.name.lower() in name]


def target_for_schedule(light_schedule: LightSchedule, location: Location, now: datetime) -> Optional[LightState]:
    try:
        schedule = build_schedule(light_schedule, location, now.date())
        interval = current_interval(schedule, now)
    except StaleScheduleError as e:
        logger.warning(f"🎨 {e}")
        return None
    return calculate_light_state_in_interval(interval, now)


async def update_scenes(
    bridge: BridgeGateway,
    configuration: Configuration,
    location: Location,
    now: datetime,
) -> int:
    """Update all Kelvin scenes on the bridge. Returns the number updated."""
    logger.debug("🎨 Updating scenes...")
    try:
        scenes = await bridge.list_scenes()
    except DeviceError as e:
        logger.warning(f"🎨 Could not list scenes: {e}")
        return 0

    updated = 0
    for scene in scenes:
        for light_schedule in schedules_for_scene(scene, configuration):
            if not light_schedule.associated_device_ids:
                continue
            logger.debug(f"🎨 Updating scene \"{scene.name}\" for schedule \"{light_schedule.name}\"...")
            if await update_scene_for_schedule(bridge, scene, light_schedule, location, now):
                updated += 1
    return updated


async def update_scene_for_schedule(
    bridge: BridgeGateway,
    scene: Scene,
    light_schedule: LightSchedule,
    location: Location,
    now: datetime,
) -> bool:
    state = target_for_schedule(light_schedule, location, now)
    if state is None:
        return False

    try:
        if sorted(scene.light_ids) != sorted(light_schedule.associated_device_ids):
            if not await bridge.set_scene_lights(scene.id, light_schedule.associated_device_ids):
                return False
        for light_id in light_schedule.associated_device_ids:
            if not await bridge.update_scene_light(scene.id, light_id, state):
                return False
    except DeviceError as e:
        logger.warning(f"🎨 Could not update scene \"{scene.name}\": {e}")
        return False

    logger.debug(f"🎨 Successfully updated scene \"{scene.name}\" to {state}")
    return True
