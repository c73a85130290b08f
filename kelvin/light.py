"""
Per-light reconciliation state machine.

A Light compares the state observed on its device with the target computed
from its schedule once per tick and decides whether to write. It yields to
manual changes: as soon as the device differs from what Kelvin wrote last,
the light is left alone until it disappears and reappears (turned off and on)
or a Kelvin scene is activated.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .config import Configuration
from .exceptions import NotAssociatedError, StaleScheduleError
from .gateway import DEFAULT_TRANSITION, DeviceGateway, DeviceState
from .interval import Interval, calculate_light_state_in_interval, current_interval
from .lightstate import LightState
from .location import Location
from .schedule import Schedule, build_schedule

logger = logging.getLogger(__name__)

# After a light appeared the target is written repeatedly during this period
# because the zigbee communication of a just powered light is unstable.
INITIALIZATION_GRACE_PERIOD = timedelta(seconds=10)
# The observed state has to match the target this long to finish initializing
STABLE_MATCH_PERIOD = timedelta(seconds=3)


class LightStatus(Enum):
    """Reconciliation state of a light."""
    UNSCHEDULED = "unscheduled"
    NOT_TRACKING = "not tracking"
    INITIALIZING = "initializing"
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class Light:
    """Drives one device along its schedule."""

    def __init__(
        self,
        device: DeviceGateway,
        configuration: Configuration,
        location: Location,
        transition: float = DEFAULT_TRANSITION,
        grace_period: timedelta = INITIALIZATION_GRACE_PERIOD,
        stable_period: timedelta = STABLE_MATCH_PERIOD,
    ):
        self.device = device
        self.configuration = configuration
        self.location = location
        self.transition = transition
        self.grace_period = grace_period
        self.stable_period = stable_period

        self.scheduled = True
        self.reachable = False
        self.on = False
        self.tracking = False
        self.automatic = False
        self.initializing = False
        self.appeared_at: Optional[datetime] = None
        self.initializing_since: Optional[datetime] = None
        self.matched_since: Optional[datetime] = None

        self.schedule: Optional[Schedule] = None
        self.interval: Optional[Interval] = None
        self.target: Optional[LightState] = None
        self.last_written: Optional[LightState] = None
        self.observed: Optional[LightState] = None

    @property
    def id(self) -> int:
        return self.device.descriptor.id

    @property
    def name(self) -> str:
        return self.device.descriptor.name

    @property
    def status(self) -> LightStatus:
        if not self.scheduled:
            return LightStatus.UNSCHEDULED
        if not self.tracking:
            return LightStatus.NOT_TRACKING
        if self.initializing:
            return LightStatus.INITIALIZING
        if self.automatic:
            return LightStatus.AUTOMATIC
        return LightStatus.MANUAL

    def __repr__(self) -> str:
        return f"<Light {self.id} '{self.name}' {self.status.value} target={self.target}>"

    # ------------------------------------------------------------------
    # Schedule, interval and target (daily and slow cadence)
    # ------------------------------------------------------------------

    def update_schedule(self, now: datetime) -> Optional[Schedule]:
        """Build the schedule for the day of ``now``.

        A light without an associated schedule is marked unscheduled for the
        rest of the run.
        """
        try:
            light_schedule = self.configuration.schedule_for_light(self.id)
        except NotAssociatedError:
            if self.scheduled:
                logger.warning(f"💡 Light {self.name} ({self.id}) is not associated with any schedule. Ignoring.")
            self.scheduled = False
            self.schedule = None
            return None

        self.scheduled = True
        self.schedule = build_schedule(light_schedule, self.location, now.date())
        self.interval = None
        logger.debug(f"💡 Light {self.name}: schedule '{self.schedule.name}' for {self.schedule.day}")
        return self.schedule

    def update_interval(self, now: datetime) -> bool:
        """Recompute the current interval. Returns True if it changed."""
        if not self.scheduled:
            return False
        if self.schedule is None or not self.schedule.covers(now):
            if self.update_schedule(now) is None:
                return False

        try:
            interval = current_interval(self.schedule, now)
        except StaleScheduleError as e:
            logger.debug(f"💡 Light {self.name}: {e}. Rebuilding schedule.")
            if self.update_schedule(now) is None:
                return False
            interval = current_interval(self.schedule, now)

        if interval == self.interval:
            return False
        self.interval = interval
        logger.info(f"💡 Light {self.name}: new interval {interval}")
        return True

    def update_target(self, now: datetime) -> Optional[LightState]:
        """Recompute the target light state for ``now``."""
        self.update_interval(now)
        if self.interval is None:
            return None

        target = calculate_light_state_in_interval(self.interval, now)
        target = self._adjust_to_device(target)
        minimum = self.device.descriptor.minimum_color_temperature
        if not target.is_valid(minimum):
            logger.warning(f"💡 Light {self.name}: calculated invalid target {target} ({target!r})")

        if target != self.target:
            logger.debug(f"💡 Light {self.name}: target {target}")
        self.target = target
        return target

    def _adjust_to_device(self, state: LightState) -> LightState:
        descriptor = self.device.descriptor
        if not descriptor.supports_color:
            state = LightState(None, None, state.brightness)
        if not descriptor.dimmable:
            state = LightState(state.color_temperature, state.color, None)
        return state.with_minimum_temperature(descriptor.minimum_color_temperature)

    # ------------------------------------------------------------------
    # Reconciliation (fast cadence)
    # ------------------------------------------------------------------

    async def update(self, now: datetime) -> bool:
        """Run one reconciliation tick. Returns True if the device was written.

        Raises:
            DeviceError: If reading or writing the device failed.
        """
        if not self.scheduled:
            return False

        state = await self.device.read_state()
        self._observe(state)

        if not self.reachable or not self.on:
            if self.tracking:
                logger.info(f"💡 Light {self.name} is no longer reachable or turned on. Clearing state.")
            self._clear()
            return False

        if self.target is None:
            self.update_target(now)
            if self.target is None:
                return False

        if not self.tracking:
            self.tracking = True
            self.appeared_at = now
            if self.schedule is not None and self.schedule.enable_when_lights_appear:
                logger.info(f"💡 Light {self.name} just appeared. Initializing state to {self.target}")
                self._start_initializing(now)
            else:
                logger.info(f"💡 Light {self.name} just appeared. Waiting for a Kelvin scene to be activated.")

        if not self.automatic and not self.initializing:
            if not self._matches(self.target):
                return False
            logger.info(f"🎨 Light {self.name}: detected activation of a Kelvin scene")
            self._start_initializing(now)

        if self.initializing:
            return await self._initialize(now)

        # did the user manually change the light state?
        if self.last_written is not None and not self._matches(self.last_written):
            logger.info(
                f"💡 Light {self.name} was manually changed (current: {self.observed}, "
                f"last set: {self.last_written}). Stopping automatic updates."
            )
            self.automatic = False
            return False

        if self._matches(self.target):
            return False

        logger.info(f"💡 Updating light {self.name} to {self.target}")
        return await self._write(self.target)

    async def _initialize(self, now: datetime) -> bool:
        if self._matches(self.target):
            if self.matched_since is None:
                self.matched_since = now
            if now - self.matched_since >= self.stable_period:
                logger.info(f"💡 Light {self.name} initialized to {self.target}")
                self._finish_initializing(self.target)
            return False

        self.matched_since = None
        if now - self.initializing_since >= self.grace_period:
            logger.warning(
                f"💡 Light {self.name} did not settle on {self.target} within "
                f"{self.grace_period.total_seconds():.0f}s (current: {self.observed})"
            )
            self._finish_initializing(self.last_written or self.target)
            return False

        return await self._write(self.target)

    async def _write(self, state: LightState) -> bool:
        written = await self.device.write_state(state.color_temperature, state.brightness, self.transition)
        if written:
            self.last_written = state
        return written

    def _observe(self, state: DeviceState) -> None:
        self.reachable = state.reachable
        self.on = state.reachable and state.on
        self.observed = state.light_state(self.device.descriptor.minimum_color_temperature)

    def _matches(self, reference: LightState) -> bool:
        if self.observed is None:
            return False
        return self.observed.masked_like(reference).equals(reference)

    def _start_initializing(self, now: datetime) -> None:
        self.initializing = True
        self.automatic = False
        self.initializing_since = now
        self.matched_since = None

    def _finish_initializing(self, reference: LightState) -> None:
        self.initializing = False
        self.automatic = True
        self.matched_since = None
        self.last_written = reference

    def _clear(self) -> None:
        self.tracking = False
        self.automatic = False
        self.initializing = False
        self.appeared_at = None
        self.initializing_since = None
        self.matched_since = None
        self.last_written = None

    # ------------------------------------------------------------------
    # Operator overrides
    # ------------------------------------------------------------------

    def set_automatic(self, enabled: bool, now: Optional[datetime] = None) -> None:
        """Hand the light back to the schedule, or take it away."""
        if not self.scheduled:
            return
        if enabled:
            logger.info(f"💡 Light {self.name}: automatic mode enabled")
            if self.tracking:
                self._start_initializing(now or datetime.now(self.location.tzinfo))
        else:
            logger.info(f"💡 Light {self.name}: automatic mode disabled")
            self.automatic = False
            self.initializing = False
            self.matched_since = None

    async def activate(self, now: Optional[datetime] = None) -> bool:
        """Write the current target right away and take over the light."""
        if not self.scheduled:
            return False
        now = now or datetime.now(self.location.tzinfo)
        target = self.update_target(now)
        if target is None:
            return False
        logger.info(f"💡 Activating light {self.name} at {target}")
        written = await self._write(target)
        if written:
            self.tracking = True
            self.appeared_at = self.appeared_at or now
            self._start_initializing(now)
        return written
