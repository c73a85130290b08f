#!/usr/bin/env python3
"""Test suite for daemon.py and the command line entry point."""

import asyncio
import json
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from kelvin.__main__ import main
from kelvin.config import BridgeConfig, Configuration, LocationConfig
from kelvin.daemon import (
    AppContext,
    Daemon,
    associate_unassigned_lights,
    create_context,
    format_light_table,
    resolve_location,
    seconds_until_midnight,
)
from kelvin.exceptions import ConfigurationError, DeviceError, IntervalConsistencyError
from kelvin.gateway import DeviceDescriptor, DeviceType, Scene
from kelvin.hue import HueBridge
from kelvin.light import Light, LightStatus
from kelvin.lightstate import LightState
from kelvin.location import Location

from .conftest import FakeBridge, FakeDevice, make_schedule


def porch():
    return FakeDevice(DeviceDescriptor.for_type(2, "Porch", DeviceType.DIMMABLE))


def make_daemon(configuration, location, bridge, start):
    times = [start]
    context = AppContext(configuration, location, bridge, tick=0.01, slow_tick=60)
    return Daemon(context, clock=lambda: times[-1]), times


class TestHelpers:
    """Module level helpers."""

    def test_associate_when_no_schedule_has_lights(self):
        configuration = Configuration(schedules=[make_schedule(device_ids=()), make_schedule("bedroom", device_ids=())])
        devices = [FakeDevice().descriptor, porch().descriptor]
        assert associate_unassigned_lights(configuration, devices) is True
        assert configuration.schedules[0].associated_device_ids == [1, 2]
        assert configuration.schedules[1].associated_device_ids == []

    def test_existing_association_is_kept(self, configuration):
        assert associate_unassigned_lights(configuration, [porch().descriptor]) is False
        assert configuration.schedules[0].associated_device_ids == [1]

    def test_light_table(self, configuration):
        table = format_light_table([FakeDevice().descriptor, porch().descriptor], configuration)
        lines = table.splitlines()
        assert lines[0].split()[:2] == ["ID", "Name"]
        assert set(lines[1].replace(" ", "")) == {"-"}
        assert "Extended color light" in lines[2]
        assert "living room" in lines[2]
        assert "2000" in lines[2]
        assert "Porch" in lines[3]
        assert lines[3].endswith("-")

    def test_seconds_until_midnight(self, at):
        assert seconds_until_midnight(at(23, 59, 30)) == 30.0
        assert seconds_until_midnight(at(0)) == 86400.0


class TestContext:
    """Location and context setup."""

    @pytest.mark.asyncio
    async def test_configured_location(self):
        configuration = Configuration(location=LocationConfig(53.55, 9.99, "Europe/Berlin"))
        session = MagicMock()
        location = await resolve_location(configuration, session)
        assert location == Location(53.55, 9.99, "Europe/Berlin")
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_detected_location_is_stored(self):
        configuration = Configuration()
        detected = Location(48.14, 11.58, "Europe/Berlin")
        with patch("kelvin.daemon.detect_location", AsyncMock(return_value=detected)):
            location = await resolve_location(configuration, MagicMock())
        assert location == detected
        assert configuration.location == LocationConfig(48.14, 11.58, "Europe/Berlin")

    @pytest.mark.asyncio
    async def test_bridge_not_configured(self):
        with pytest.raises(ConfigurationError, match="Bridge not configured"):
            await create_context(Configuration(), MagicMock())

    @pytest.mark.asyncio
    async def test_create_context(self, tmp_path):
        configuration = Configuration(
            path=tmp_path / "config.json",
            bridge=BridgeConfig("10.0.0.2", "user"),
            location=LocationConfig(53.55, 9.99, "Europe/Berlin"),
            schedules=[make_schedule()],
        )
        context = await create_context(configuration, MagicMock())
        assert isinstance(context.bridge, HueBridge)
        assert context.location.timezone == "Europe/Berlin"
        assert (tmp_path / "config.json").exists()


class TestDaemon:
    """Light discovery and the task loops."""

    @pytest.mark.asyncio
    async def test_discover_lights(self, configuration, location, at):
        daemon, _ = make_daemon(configuration, location, FakeBridge([FakeDevice(), porch()]), at(12))
        lights = await daemon.discover_lights()
        assert set(lights) == {1, 2}
        assert lights[1].target == LightState.from_values(2750, 100)
        assert lights[2].status is LightStatus.UNSCHEDULED

    @pytest.mark.asyncio
    async def test_discovery_associates_lights(self, tmp_path, location, at):
        configuration = Configuration(path=tmp_path / "config.json", schedules=[make_schedule(device_ids=())])
        daemon, _ = make_daemon(configuration, location, FakeBridge([FakeDevice(), porch()]), at(12))
        lights = await daemon.discover_lights()
        assert all(light.scheduled for light in lights.values())
        saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
        assert saved["schedules"][0]["associatedDeviceIDs"] == [1, 2]

    @pytest.mark.asyncio
    async def test_device_errors_do_not_stop_the_light(self, configuration, location, at, caplog):
        device = FakeDevice()
        device.fail_reads = True
        daemon, _ = make_daemon(configuration, location, FakeBridge([device]), at(12))
        await daemon.discover_lights()

        with caplog.at_level(logging.WARNING):
            task = asyncio.create_task(daemon.run_light(daemon.light(1)))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
        assert device.reads >= 2
        assert "read failed" in caplog.text

    @pytest.mark.asyncio
    async def test_consistency_error_is_fatal(self, configuration, location, at):
        daemon, _ = make_daemon(configuration, location, FakeBridge([FakeDevice()]), at(12))
        with patch.object(Light, "update", AsyncMock(side_effect=IntervalConsistencyError("no interval"))):
            with pytest.raises(IntervalConsistencyError):
                await daemon.run()
        assert daemon.tasks == []

    @pytest.mark.asyncio
    async def test_refresh_targets_updates_lights_and_scenes(self, configuration, location, at):
        bridge = FakeBridge([FakeDevice()], scenes=[Scene("s1", "Kelvin living room", [1])])
        daemon, times = make_daemon(configuration, location, bridge, at(12))
        await daemon.discover_lights()

        times.append(at(19, 30))
        await daemon.refresh_targets()
        assert daemon.light(1).target == LightState.from_values(2525, 90)
        assert bridge.scene_states[("s1", 1)] == LightState.from_values(2525, 90)

    @pytest.mark.asyncio
    async def test_rebuild_schedules(self, configuration, location, at):
        daemon, times = make_daemon(configuration, location, FakeBridge([FakeDevice()]), at(23))
        await daemon.discover_lights()
        tomorrow = at(3) + timedelta(days=1)
        times.append(tomorrow)
        await daemon.rebuild_schedules()
        assert daemon.light(1).schedule.day == tomorrow.date()


class TestOverrides:
    """Operator overrides routed through the daemon."""

    @pytest.mark.asyncio
    async def test_unknown_light(self, configuration, location, at):
        daemon, _ = make_daemon(configuration, location, FakeBridge([FakeDevice()]), at(12))
        await daemon.discover_lights()
        with pytest.raises(DeviceError):
            daemon.set_automatic(9, True)

    @pytest.mark.asyncio
    async def test_activate_and_disable(self, location, at):
        configuration = Configuration(schedules=[make_schedule(enable_when_lights_appear=False)])
        device = FakeDevice()
        daemon, _ = make_daemon(configuration, location, FakeBridge([device]), at(12))
        await daemon.discover_lights()

        assert await daemon.activate(1) is True
        assert device.writes == [(2750, 100, 1.0)]
        assert daemon.light(1).status is LightStatus.INITIALIZING

        daemon.set_automatic(1, False)
        assert daemon.light(1).status is LightStatus.MANUAL


class TestMain:
    """Command line."""

    @pytest.fixture
    def config_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "version": 1,
            "bridge": {"ip": "", "username": ""},
            "location": {"latitude": 52.52, "longitude": 13.40, "timezone": "Europe/Berlin"},
            "schedules": [make_schedule().to_dict()],
        }), encoding="utf-8")
        return path

    def test_preview(self, config_file, capsys):
        assert main(["-c", str(config_file), "preview", "--date", "2024-03-14", "--step", "60"]) == 0
        output = capsys.readouterr().out
        assert "Schedule 'living room' for 2024-03-14" in output
        rows = [line for line in output.splitlines() if line[:2].isdigit()]
        assert len(rows) == 24
        assert rows[0].startswith("00:00")
        assert rows[12] == "12:00  2750K at 100%"

    def test_preview_unknown_schedule(self, config_file):
        assert main(["-c", str(config_file), "preview", "--schedule", "attic"]) == 1

    def test_bridge_not_configured(self, config_file):
        assert main(["-c", str(config_file), "lights"]) == 1
        assert main(["-c", str(config_file), "run"]) == 1

    def test_new_configuration_file(self, tmp_path):
        path = tmp_path / "fresh.json"
        assert main(["-c", str(path)]) == 1
        assert path.exists()
