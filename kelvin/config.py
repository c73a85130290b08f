#!/usr/bin/env python3
"""Configuration management.

The configuration is a single JSON or YAML file (chosen by its suffix) with
the bridge credentials, the location and the light schedules:

    {
      "version": 1,
      "bridge": {"ip": "192.168.1.2", "username": "..."},
      "location": {"latitude": 53.55, "longitude": 9.99, "timezone": "Europe/Berlin"},
      "schedules": [
        {
          "name": "default",
          "associatedDeviceIDs": [1, 2],
          "enableWhenLightsAppear": true,
          "defaultColorTemperature": 2750,
          "defaultBrightness": 100,
          "beforeSunrise": [{"time": "04:00", "colorTemperature": 2000, "brightness": 60}],
          "afterSunset": [{"time": "20:00", "colorTemperature": 2300, "brightness": 80}]
        }
      ]
    }

A color temperature or brightness of -1 means "leave this channel alone".
Older files (version 0) are migrated when they are read. Unknown top level
keys are kept as they are.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ConfigurationError, NotAssociatedError

logger = logging.getLogger(__name__)

CURRENT_VERSION = 1
DEFAULT_CONFIG_FILE = os.getenv("KELVIN_CONFIG", "config.json")

YAML_SUFFIXES = (".yaml", ".yml")


def _optional(value: Any) -> Optional[int]:
    """Map the file's -1 "unset" marker to None."""
    if value is None or int(value) == -1:
        return None
    return int(value)


def _marker(value: Optional[int]) -> int:
    return -1 if value is None else value


@dataclass
class TimedColorTemperature:
    """A light configuration which will be reached at the given wall clock time."""

    time: str
    color_temperature: Optional[int] = None
    brightness: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimedColorTemperature":
        return cls(
            time=str(data.get("time", "")),
            color_temperature=_optional(data.get("colorTemperature", -1)),
            brightness=_optional(data.get("brightness", -1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "colorTemperature": _marker(self.color_temperature),
            "brightness": _marker(self.brightness),
        }


@dataclass
class LightSchedule:
    """The schedule for any given day for the associated lights."""

    name: str
    associated_device_ids: List[int] = field(default_factory=list)
    enable_when_lights_appear: bool = True
    default_color_temperature: Optional[int] = 2750
    default_brightness: Optional[int] = 100
    before_sunrise: List[TimedColorTemperature] = field(default_factory=list)
    after_sunset: List[TimedColorTemperature] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LightSchedule":
        return cls(
            name=str(data.get("name", "")),
            associated_device_ids=[int(i) for i in data.get("associatedDeviceIDs", [])],
            enable_when_lights_appear=bool(data.get("enableWhenLightsAppear", True)),
            default_color_temperature=_optional(data.get("defaultColorTemperature", -1)),
            default_brightness=_optional(data.get("defaultBrightness", -1)),
            before_sunrise=[TimedColorTemperature.from_dict(e) for e in data.get("beforeSunrise", [])],
            after_sunset=[TimedColorTemperature.from_dict(e) for e in data.get("afterSunset", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "associatedDeviceIDs": list(self.associated_device_ids),
            "enableWhenLightsAppear": self.enable_when_lights_appear,
            "defaultColorTemperature": _marker(self.default_color_temperature),
            "defaultBrightness": _marker(self.default_brightness),
            "beforeSunrise": [e.to_dict() for e in self.before_sunrise],
            "afterSunset": [e.to_dict() for e in self.after_sunset],
        }


@dataclass
class BridgeConfig:
    ip: str = ""
    username: str = ""


@dataclass
class LocationConfig:
    latitude: float = 0.0
    longitude: float = 0.0
    timezone: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return self.latitude != 0 and self.longitude != 0


def default_schedules() -> List[LightSchedule]:
    """Return the schedule generated for new configurations."""
    return [
        LightSchedule(
            name="default",
            associated_device_ids=[],
            enable_when_lights_appear=True,
            default_color_temperature=2750,
            default_brightness=100,
            before_sunrise=[TimedColorTemperature("04:00", 2000, 60)],
            after_sunset=[
                TimedColorTemperature("20:00", 2300, 80),
                TimedColorTemperature("22:00", 2000, 60),
            ],
        )
    ]


@dataclass
class Configuration:
    """All parameters Kelvin needs to operate.

    Read-only for the running daemon apart from the write-back after defaults
    were generated, the location was detected or a migration ran.
    """

    path: Optional[Path] = None
    version: int = CURRENT_VERSION
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    location: LocationConfig = field(default_factory=LocationConfig)
    schedules: List[LightSchedule] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)
    _hash: str = field(default="", repr=False, compare=False)

    # -- (de)serialization ----------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any], path: Optional[Path] = None) -> "Configuration":
        if not isinstance(data, dict):
            raise ConfigurationError(f"Invalid configuration format in {path}")

        bridge = data.get("bridge") or {}
        location = data.get("location") or {}
        try:
            configuration = cls(
                path=path,
                version=int(data.get("version", 0)),
                bridge=BridgeConfig(ip=str(bridge.get("ip", "")), username=str(bridge.get("username", ""))),
                location=LocationConfig(
                    latitude=float(location.get("latitude", 0.0)),
                    longitude=float(location.get("longitude", 0.0)),
                    timezone=location.get("timezone"),
                ),
                schedules=[LightSchedule.from_dict(s) for s in data.get("schedules") or []],
                extra={k: v for k, v in data.items() if k not in ("version", "bridge", "location", "schedules")},
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}") from e
        return configuration

    def to_dict(self) -> Dict[str, Any]:
        location: Dict[str, Any] = {
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
        }
        if self.location.timezone:
            location["timezone"] = self.location.timezone
        data: Dict[str, Any] = {
            "version": self.version,
            "bridge": {"ip": self.bridge.ip, "username": self.bridge.username},
            "location": location,
            "schedules": [s.to_dict() for s in self.schedules],
        }
        data.update(self.extra)
        return data

    def hash_value(self) -> str:
        """SHA256 hash of the serialized configuration."""
        raw = json.dumps(self.to_dict(), sort_keys=True).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def has_changed(self) -> bool:
        return not self._hash or self._hash != self.hash_value()

    # -- file handling ---------------------------------------------------

    def _is_yaml(self) -> bool:
        return self.path is not None and self.path.suffix.lower() in YAML_SUFFIXES

    def exists(self) -> bool:
        return self.path is not None and self.path.is_file()

    def read(self) -> None:
        """Load the configuration from disk, migrating it if necessary."""
        if self.path is None:
            raise ConfigurationError("No configuration filename configured")

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                if self._is_yaml():
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Could not read configuration {self.path}: {e}") from e

        loaded = Configuration.from_dict(data, self.path)
        self.version = loaded.version
        self.bridge = loaded.bridge
        self.location = loaded.location
        self.schedules = loaded.schedules
        self.extra = loaded.extra
        self._hash = self.hash_value()

        if self.version < CURRENT_VERSION:
            self.migrate_to_latest_version()

        if not self.schedules:
            logger.warning("⚙ Your current configuration doesn't contain any schedules! Generating default schedule...")
            try:
                self.backup()
            except OSError as e:
                logger.warning(f"Could not create backup: {e}")
            else:
                self.schedules = default_schedules()
                logger.info("Default schedule created.")

    def write(self) -> bool:
        """Save the configuration to disk if it changed.

        Returns:
            True if the file was written, False if nothing changed.
        """
        if self.path is None:
            raise ConfigurationError("No configuration filename configured")

        if not self.has_changed():
            logger.debug("Configuration hasn't changed. Omitting write.")
            return False

        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp", prefix=f".{self.path.name}_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                if self._is_yaml():
                    yaml.safe_dump(self.to_dict(), f, sort_keys=False, allow_unicode=True)
                else:
                    json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        self._hash = self.hash_value()
        logger.debug(f"Saved configuration to {self.path}")
        return True

    def backup(self) -> Path:
        """Move the current file aside with the date as suffix."""
        backup_path = self.path.with_name(f"{self.path.name}_{datetime.now().strftime('%m%d%Y')}")
        logger.debug(f"Moving configuration to {backup_path}.")
        os.replace(self.path, backup_path)
        return backup_path

    # -- migrations ------------------------------------------------------

    def migrate_to_latest_version(self) -> None:
        logger.debug("⚙ Migrating configuration to latest version...")
        if self.version == 0:
            self._migrate_version_0()
        logger.debug("⚙ Migration of configuration complete")

    def _migrate_version_0(self) -> None:
        """Convert 12-hour timestamps and enable automation when lights appear."""
        logger.debug("⚙ Migrating configuration version 0 to version 1...")
        for schedule in self.schedules:
            for entry in schedule.before_sunrise + schedule.after_sunset:
                try:
                    entry.time = migrate_timestamp_format(entry.time)
                except ValueError as e:
                    logger.warning(str(e))
            schedule.enable_when_lights_appear = True
        self.version = 1
        logger.debug("⚙ Migration to version 1 complete")

    # -- lookups ---------------------------------------------------------

    def schedule_for_light(self, light_id: int) -> LightSchedule:
        """Return the schedule the given device is associated with.

        Raises:
            NotAssociatedError: If no schedule lists the device.
        """
        for schedule in self.schedules:
            if light_id in schedule.associated_device_ids:
                return schedule
        raise NotAssociatedError(f"Light {light_id} is not associated with any schedule in configuration")

    def schedule_by_name(self, name: str) -> Optional[LightSchedule]:
        for schedule in self.schedules:
            if schedule.name.lower() == name.lower():
                return schedule
        return None


def migrate_timestamp_format(timestamp: str) -> str:
    """Convert a "3:04PM" style timestamp to "15:04"; keep "15:04" unchanged."""
    try:
        parsed = datetime.strptime(timestamp.strip().upper(), "%I:%M%p")
        converted = parsed.strftime("%H:%M")
        logger.debug(f"⚙ Migrating old timestamp {timestamp} to {converted}")
        return converted
    except ValueError:
        pass

    try:
        datetime.strptime(timestamp, "%H:%M")
        return timestamp
    except ValueError:
        raise ValueError(f"Invalid timestamp format: {timestamp}") from None


def initialize_configuration(path: Optional[str] = None) -> Configuration:
    """Load the configuration or create a new one with default values."""
    configuration = Configuration(path=Path(path or DEFAULT_CONFIG_FILE))
    if configuration.exists():
        configuration.read()
        logger.info(f"⚙ Configuration {configuration.path} loaded")
    else:
        configuration.schedules = default_schedules()
        configuration.write()
        logger.info("⚙ Default configuration generated")
    return configuration
