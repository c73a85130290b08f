"""
Gateway contracts for talking to lighting hardware.

A BridgeGateway enumerates devices and batches state reads, a DeviceGateway
reads and writes a single light. The reconciliation engine only depends on
these abstractions; ``kelvin.hue`` implements them for a Hue bridge.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .colors import MIN_COLOR_TEMPERATURE
from .lightstate import LightState

logger = logging.getLogger(__name__)

# Transition used for every write (seconds)
DEFAULT_TRANSITION = 1.0


class DeviceType(Enum):
    """Device types reported by the bridge."""
    DIMMABLE = "Dimmable light"
    COLOR_TEMPERATURE = "Color temperature light"
    COLOR = "Color light"
    EXTENDED_COLOR = "Extended color light"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DeviceType":
        for member in cls:
            if member.value.lower() == (value or "").lower():
                return member
        return cls.UNKNOWN


@dataclass
class DeviceState:
    """Raw attributes reported by a device, in device units."""
    reachable: bool = False
    on: bool = False
    ct: Optional[int] = None  # mired
    xy: Optional[Tuple[float, float]] = None
    bri: Optional[int] = None  # 0-254
    colormode: Optional[str] = None

    def light_state(self, minimum_color_temperature: int = MIN_COLOR_TEMPERATURE) -> LightState:
        return LightState.from_device_values(self.ct, self.xy, self.bri, minimum_color_temperature)


@dataclass
class DeviceDescriptor:
    """A device known to the bridge together with its capabilities."""
    id: int
    name: str
    type: DeviceType = DeviceType.UNKNOWN
    model_id: str = ""
    dimmable: bool = False
    supports_color_temperature: bool = False
    supports_xy_color: bool = False
    minimum_color_temperature: int = MIN_COLOR_TEMPERATURE
    state: DeviceState = field(default_factory=DeviceState)

    @classmethod
    def for_type(cls, id: int, name: str, device_type: DeviceType, **kwargs: Any) -> "DeviceDescriptor":
        """Build a descriptor with capabilities derived from the device type."""
        return cls(
            id=id,
            name=name,
            type=device_type,
            dimmable=device_type is not DeviceType.UNKNOWN,
            supports_color_temperature=device_type in (DeviceType.COLOR_TEMPERATURE, DeviceType.EXTENDED_COLOR),
            supports_xy_color=device_type in (DeviceType.COLOR, DeviceType.EXTENDED_COLOR),
            # Ambiance lights don't go below 2200K
            minimum_color_temperature=2200 if device_type is DeviceType.COLOR_TEMPERATURE else MIN_COLOR_TEMPERATURE,
            **kwargs,
        )

    @property
    def supports_color(self) -> bool:
        return self.supports_color_temperature or self.supports_xy_color


@dataclass
class Scene:
    """A scene stored on the bridge."""
    id: str
    name: str
    light_ids: List[int] = field(default_factory=list)


class DeviceGateway(ABC):
    """Read/write access to a single light."""

    descriptor: DeviceDescriptor

    @abstractmethod
    async def read_state(self) -> DeviceState:
        """Return the currently observed device state.

        Raises:
            DeviceError: If the device could not be read.
        """
        pass

    @abstractmethod
    async def write_state(
        self,
        color_temperature: Optional[int],
        brightness: Optional[int],
        transition: float = DEFAULT_TRANSITION,
    ) -> bool:
        """Write a color temperature (Kelvin) and brightness (percent).

        ``None`` leaves a channel untouched, a brightness of 0 turns the
        device off. Returns once the transition finished.

        Raises:
            DeviceError: If the write was rejected or failed.
        """
        pass


class BridgeGateway(ABC):
    """Enumerates devices and relays batched state reads."""

    @abstractmethod
    async def list_devices(self) -> List[DeviceDescriptor]:
        """List all lights known to the bridge."""
        pass

    @abstractmethod
    async def read_all_states(self) -> Dict[int, DeviceState]:
        """Read the state of every light in one call."""
        pass

    @abstractmethod
    def device(self, device_id: int) -> DeviceGateway:
        """Return the gateway for a single light."""
        pass

    async def list_scenes(self) -> List[Scene]:
        """List scenes stored on the bridge (if supported)."""
        return []

    async def update_scene_light(self, scene_id: str, light_id: int, state: LightState) -> bool:
        """Store a light state in a scene (if supported)."""
        logger.warning(f"🎨 {type(self).__name__} does not support scenes")
        return False

    async def set_scene_lights(self, scene_id: str, light_ids: List[int]) -> bool:
        """Replace the lights of a scene (if supported)."""
        logger.warning(f"🎨 {type(self).__name__} does not support scenes")
        return False
