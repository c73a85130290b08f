#!/usr/bin/env python3
"""Test suite for scenes.py - Kelvin scene synchronization."""

import logging
from unittest.mock import AsyncMock

import pytest

from kelvin.config import Configuration
from kelvin.exceptions import DeviceError
from kelvin.gateway import BridgeGateway, Scene
from kelvin.lightstate import LightState
from kelvin.scenes import schedules_for_scene, update_scenes

from .conftest import FakeBridge, FakeDevice, make_schedule


@pytest.fixture
def two_schedules():
    return Configuration(schedules=[
        make_schedule("living room", device_ids=(1, 2)),
        make_schedule("bedroom", device_ids=(3,)),
    ])


class TestMatching:
    """Which scenes belong to which schedule."""

    def test_scene_name_must_contain_kelvin(self, two_schedules):
        assert schedules_for_scene(Scene("a", "Living room relax"), two_schedules) == []

    def test_scene_name_must_contain_schedule(self, two_schedules):
        matches = schedules_for_scene(Scene("a", "KELVIN Living Room"), two_schedules)
        assert [s.name for s in matches] == ["living room"]

    def test_unknown_schedule(self, two_schedules):
        assert schedules_for_scene(Scene("a", "Kelvin attic"), two_schedules) == []


class TestUpdateScenes:
    """update_scenes against a fake bridge."""

    @pytest.mark.asyncio
    async def test_scene_gets_current_target(self, two_schedules, location, at):
        bridge = FakeBridge([FakeDevice()], scenes=[Scene("s1", "Kelvin living room", [1, 2])])
        assert await update_scenes(bridge, two_schedules, location, at(5, 30)) == 1
        assert bridge.scene_states[("s1", 1)] == LightState.from_values(2375, 80)
        assert bridge.scene_states[("s1", 2)] == LightState.from_values(2375, 80)
        assert bridge.scene_lights == {}

    @pytest.mark.asyncio
    async def test_scene_lights_follow_schedule(self, two_schedules, location, at):
        bridge = FakeBridge([FakeDevice()], scenes=[Scene("s2", "Kelvin bedroom", [3, 4])])
        await update_scenes(bridge, two_schedules, location, at(12))
        assert bridge.scene_lights == {"s2": [3]}
        assert list(bridge.scene_states) == [("s2", 3)]

    @pytest.mark.asyncio
    async def test_other_scenes_untouched(self, two_schedules, location, at):
        bridge = FakeBridge([FakeDevice()], scenes=[Scene("s3", "Reading", [1])])
        assert await update_scenes(bridge, two_schedules, location, at(12)) == 0
        assert bridge.scene_states == {}

    @pytest.mark.asyncio
    async def test_bridge_errors_are_logged(self, two_schedules, location, at):
        bridge = FakeBridge([FakeDevice()], scenes=[Scene("s1", "Kelvin living room", [1, 2])])
        bridge.update_scene_light = AsyncMock(side_effect=DeviceError("scene locked"))
        assert await update_scenes(bridge, two_schedules, location, at(12)) == 0

    @pytest.mark.asyncio
    async def test_listing_fails(self, two_schedules, location, at):
        bridge = FakeBridge([FakeDevice()])
        bridge.list_scenes = AsyncMock(side_effect=DeviceError("offline"))
        assert await update_scenes(bridge, two_schedules, location, at(12)) == 0


class ListOnlyBridge(FakeBridge):
    """Bridge that lists scenes but cannot store them."""

    update_scene_light = BridgeGateway.update_scene_light
    set_scene_lights = BridgeGateway.set_scene_lights


class TestWithoutSceneSupport:
    """Scene updates on a gateway without scene storage."""

    @pytest.mark.asyncio
    async def test_update_is_skipped(self, two_schedules, location, at, caplog):
        bridge = ListOnlyBridge([FakeDevice()], scenes=[Scene("s1", "Kelvin living room", [1, 2])])
        with caplog.at_level(logging.WARNING):
            assert await update_scenes(bridge, two_schedules, location, at(12)) == 0
        assert bridge.scene_states == {}
        assert "does not support scenes" in caplog.text
