"""Shared fixtures and test doubles."""

from dataclasses import replace
from datetime import date, datetime, time
from typing import Dict, List, Optional

import pytest

from kelvin.colors import brightness_to_device_units, temperature_to_chromaticity, temperature_to_device_units
from kelvin.config import Configuration, LightSchedule, TimedColorTemperature
from kelvin.exceptions import DeviceError
from kelvin.gateway import BridgeGateway, DeviceDescriptor, DeviceGateway, DeviceState, DeviceType, Scene
from kelvin.location import Location


class FixedLocation(Location):
    """Location with sunrise at 07:00 and sunset at 19:00 every day."""

    def solar_events(self, day: date):
        tz = self.tzinfo
        return datetime.combine(day, time(7, 0), tzinfo=tz), datetime.combine(day, time(19, 0), tzinfo=tz)


class FakeDevice(DeviceGateway):
    """In-memory light. Writes are applied to the reported state unless disabled."""

    def __init__(
        self,
        descriptor: Optional[DeviceDescriptor] = None,
        state: Optional[DeviceState] = None,
        apply_writes: bool = True,
    ):
        self.descriptor = descriptor or DeviceDescriptor.for_type(1, "Test light", DeviceType.EXTENDED_COLOR)
        self.state = state or DeviceState(reachable=True, on=True, ct=153, xy=(0.3135, 0.3237), bri=254)
        self.apply_writes = apply_writes
        self.fail_reads = False
        self.fail_writes = False
        self.reads = 0
        self.writes: List[tuple] = []

    async def read_state(self) -> DeviceState:
        self.reads += 1
        if self.fail_reads:
            raise DeviceError("read failed")
        return replace(self.state)

    async def write_state(self, color_temperature, brightness, transition=1.0) -> bool:
        if self.fail_writes:
            raise DeviceError("write failed")
        self.writes.append((color_temperature, brightness, transition))
        if self.apply_writes:
            self.show(color_temperature, brightness)
        return True

    def show(self, color_temperature: Optional[int], brightness: Optional[int]) -> None:
        """Make the device report the given values, like a user changing it."""
        minimum = self.descriptor.minimum_color_temperature
        if color_temperature is not None:
            color_temperature = max(minimum, color_temperature)
            self.state.ct = temperature_to_device_units(color_temperature, minimum)
            xy = temperature_to_chromaticity(color_temperature)
            self.state.xy = (round(xy[0], 3), round(xy[1], 3))
        if brightness is not None:
            if brightness == 0:
                self.state.on = False
            else:
                self.state.bri = brightness_to_device_units(brightness)


class FakeBridge(BridgeGateway):
    """Bridge holding FakeDevices."""

    def __init__(self, devices: List[FakeDevice], scenes: Optional[List[Scene]] = None):
        self.devices: Dict[int, FakeDevice] = {d.descriptor.id: d for d in devices}
        self.scenes = scenes or []
        self.scene_states: Dict[tuple, object] = {}
        self.scene_lights: Dict[str, List[int]] = {}

    async def list_devices(self) -> List[DeviceDescriptor]:
        return [d.descriptor for d in self.devices.values()]

    async def read_all_states(self) -> Dict[int, DeviceState]:
        return {id: d.state for id, d in self.devices.items()}

    def device(self, device_id: int) -> FakeDevice:
        return self.devices[device_id]

    async def list_scenes(self) -> List[Scene]:
        return self.scenes

    async def update_scene_light(self, scene_id, light_id, state) -> bool:
        self.scene_states[(scene_id, light_id)] = state
        return True

    async def set_scene_lights(self, scene_id, light_ids) -> bool:
        self.scene_lights[scene_id] = list(light_ids)
        return True


def make_schedule(name: str = "living room", device_ids=(1,), enable_when_lights_appear: bool = True) -> LightSchedule:
    return LightSchedule(
        name=name,
        associated_device_ids=list(device_ids),
        enable_when_lights_appear=enable_when_lights_appear,
        default_color_temperature=2750,
        default_brightness=100,
        before_sunrise=[TimedColorTemperature("04:00", 2000, 60)],
        after_sunset=[
            TimedColorTemperature("20:00", 2300, 80),
            TimedColorTemperature("22:00", 2000, 60),
        ],
    )


@pytest.fixture
def location() -> FixedLocation:
    return FixedLocation(0.0, 0.0, "UTC")


@pytest.fixture
def configuration() -> Configuration:
    return Configuration(schedules=[make_schedule()])


@pytest.fixture
def day() -> date:
    return date(2024, 3, 14)


@pytest.fixture
def at(location, day):
    """Build timestamps on the test day: at(5, 30)."""
    def _at(hour: int, minute: int = 0, second: int = 0) -> datetime:
        return datetime.combine(day, time(hour, minute, second), tzinfo=location.tzinfo)
    return _at
