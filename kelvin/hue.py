"""
Hue bridge adapter.

Implements the gateway contracts on top of the Hue REST API (v1) with
aiohttp. Every request goes through one lock which enforces a minimum delay
between calls, as the bridge drops requests that arrive in bursts.
"""

import asyncio
import logging
import os
import time
from typing import Any, Dict, List, Optional

import aiohttp

from .colors import brightness_to_device_units, temperature_to_chromaticity, temperature_to_device_units
from .exceptions import DeviceError
from .gateway import (
    DEFAULT_TRANSITION,
    BridgeGateway,
    DeviceDescriptor,
    DeviceGateway,
    DeviceState,
    DeviceType,
    Scene,
)
from .lightstate import LightState

logger = logging.getLogger(__name__)

# Minimum delay between two bridge requests (seconds)
MIN_CALL_INTERVAL = float(os.getenv("KELVIN_BRIDGE_CALL_INTERVAL", "0.1"))
# Extra wait after a transition before the light reports its new state
SETTLE_TIME = 1.0
REQUEST_TIMEOUT = 10


def _parse_state(raw: Dict[str, Any]) -> DeviceState:
    xy = raw.get("xy")
    reachable = bool(raw.get("reachable", False))
    return DeviceState(
        reachable=reachable,
        # unreachable lights keep reporting their last "on" value
        on=reachable and bool(raw.get("on", False)),
        ct=raw.get("ct"),
        xy=(float(xy[0]), float(xy[1])) if xy and len(xy) == 2 else None,
        bri=raw.get("bri"),
        colormode=raw.get("colormode"),
    )


def _parse_descriptor(light_id: str, raw: Dict[str, Any]) -> DeviceDescriptor:
    return DeviceDescriptor.for_type(
        int(light_id),
        raw.get("name", f"Light {light_id}"),
        DeviceType.parse(raw.get("type")),
        model_id=raw.get("modelid", ""),
        state=_parse_state(raw.get("state", {})),
    )


class HueBridge(BridgeGateway):
    """Hue bridge reachable at ``ip`` with an authorized ``username``."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ip: str,
        username: str,
        min_call_interval: float = MIN_CALL_INTERVAL,
        cache_ttl: float = 1.0,
        settle_time: float = SETTLE_TIME,
    ):
        self.session = session
        self.ip = ip
        self.username = username
        self.min_call_interval = min_call_interval
        self.cache_ttl = cache_ttl
        self.settle_time = settle_time
        self._lock = asyncio.Lock()
        self._last_call = 0.0
        self._states: Optional[Dict[int, DeviceState]] = None
        self._states_read_at = 0.0
        self._descriptors: Dict[int, DeviceDescriptor] = {}

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}/api/{self.username}"

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """Send one throttled request and return the decoded response."""
        url = f"{self.base_url}{path}"
        async with self._lock:
            wait = self._last_call + self.min_call_interval - time.monotonic()
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                async with self.session.request(
                    method, url, json=payload, timeout=aiohttp.ClientTimeout(total=REQUEST_TIMEOUT)
                ) as response:
                    response.raise_for_status()
                    data = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise DeviceError(f"{method} {path} failed: {e}") from e
            except ValueError as e:
                raise DeviceError(f"{method} {path} returned an invalid response: {e}") from e
            finally:
                self._last_call = time.monotonic()

        errors = [item["error"] for item in data if "error" in item] if isinstance(data, list) else []
        if errors:
            raise DeviceError(f"{method} {path} rejected: {errors[0].get('description', errors[0])}")
        return data

    async def list_devices(self) -> List[DeviceDescriptor]:
        data = await self._request("GET", "/lights")
        self._descriptors = {
            descriptor.id: descriptor
            for descriptor in (_parse_descriptor(light_id, raw) for light_id, raw in data.items())
        }
        self._states = {id: d.state for id, d in self._descriptors.items()}
        self._states_read_at = time.monotonic()
        logger.debug(f"Bridge {self.ip} reports {len(self._descriptors)} lights")
        return sorted(self._descriptors.values(), key=lambda d: d.id)

    async def read_all_states(self) -> Dict[int, DeviceState]:
        """Read all light states, reusing the last read within ``cache_ttl``."""
        if self._states is not None and time.monotonic() - self._states_read_at < self.cache_ttl:
            return self._states
        data = await self._request("GET", "/lights")
        self._states = {int(light_id): _parse_state(raw.get("state", {})) for light_id, raw in data.items()}
        self._states_read_at = time.monotonic()
        return self._states

    def invalidate(self) -> None:
        self._states = None

    def device(self, device_id: int) -> "HueDevice":
        descriptor = self._descriptors.get(device_id)
        if descriptor is None:
            raise DeviceError(f"Unknown light {device_id}; call list_devices() first")
        return HueDevice(self, descriptor)

    async def list_scenes(self) -> List[Scene]:
        data = await self._request("GET", "/scenes")
        return [
            Scene(scene_id, raw.get("name", ""), [int(light_id) for light_id in raw.get("lights", [])])
            for scene_id, raw in data.items()
        ]

    async def update_scene_light(self, scene_id: str, light_id: int, state: LightState) -> bool:
        descriptor = self._descriptors.get(light_id)
        if descriptor is None:
            raise DeviceError(f"Unknown light {light_id}; call list_devices() first")
        payload = build_state_payload(descriptor, state.color_temperature, state.brightness)
        payload.pop("transitiontime", None)
        # activating the scene turns its lights on
        payload.setdefault("on", True)
        await self._request("PUT", f"/scenes/{scene_id}/lightstates/{light_id}", payload)
        return True

    async def set_scene_lights(self, scene_id: str, light_ids: List[int]) -> bool:
        await self._request("PUT", f"/scenes/{scene_id}", {"lights": [str(light_id) for light_id in light_ids]})
        return True


def build_state_payload(
    descriptor: DeviceDescriptor,
    color_temperature: Optional[int],
    brightness: Optional[int],
    transition: float = DEFAULT_TRANSITION,
) -> Dict[str, Any]:
    """Build the body of a light state update for the device's capabilities."""
    payload: Dict[str, Any] = {}

    if color_temperature is not None and descriptor.supports_color:
        if color_temperature < descriptor.minimum_color_temperature:
            logger.debug(
                f"💡 {descriptor.name}: adjusted {color_temperature}K to device minimum "
                f"{descriptor.minimum_color_temperature}K"
            )
            color_temperature = descriptor.minimum_color_temperature
        # the bridge prefers xy when both are sent
        if descriptor.supports_xy_color:
            payload["xy"] = list(temperature_to_chromaticity(color_temperature))
        if descriptor.supports_color_temperature:
            payload["ct"] = temperature_to_device_units(color_temperature, descriptor.minimum_color_temperature)

    if brightness is not None:
        if brightness == 0:
            payload["on"] = False
        elif descriptor.dimmable:
            payload["bri"] = brightness_to_device_units(brightness)

    if payload:
        # deciseconds
        payload["transitiontime"] = int(round(transition * 10))
    return payload


class HueDevice(DeviceGateway):
    """A single light on a Hue bridge."""

    def __init__(self, bridge: HueBridge, descriptor: DeviceDescriptor):
        self.bridge = bridge
        self.descriptor = descriptor

    async def read_state(self) -> DeviceState:
        states = await self.bridge.read_all_states()
        state = states.get(self.descriptor.id)
        if state is None:
            raise DeviceError(f"Light {self.descriptor.id} ({self.descriptor.name}) not found on bridge")
        return state

    async def write_state(
        self,
        color_temperature: Optional[int],
        brightness: Optional[int],
        transition: float = DEFAULT_TRANSITION,
    ) -> bool:
        payload = build_state_payload(self.descriptor, color_temperature, brightness, transition)
        if not payload:
            logger.debug(f"💡 {self.descriptor.name}: nothing to write")
            return False

        logger.debug(f"💡 {self.descriptor.name}: setting {payload}")
        await self.bridge._request("PUT", f"/lights/{self.descriptor.id}/state", payload)
        self.bridge.invalidate()

        # Wait while the light is in transition
        await asyncio.sleep(transition + self.bridge.settle_time)
        return True
