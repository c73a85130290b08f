#!/usr/bin/env python3
"""Kelvin command line entry point."""

import argparse
import asyncio
import logging
import os
import sys
from datetime import date, datetime, timedelta
from typing import Optional

import aiohttp

from .config import DEFAULT_CONFIG_FILE, Configuration, initialize_configuration
from .daemon import format_light_table, resolve_location, run_daemon
from .exceptions import ConfigurationError, DeviceError, IntervalConsistencyError
from .hue import HueBridge
from .interval import preview_day
from .schedule import build_schedule

logger = logging.getLogger(__name__)


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kelvin",
        description="Adjust the color temperature and brightness of your lights over the day",
    )
    parser.add_argument(
        "-c", "--config",
        default=DEFAULT_CONFIG_FILE,
        help="Configuration file (.json, .yaml or .yml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="Run the daemon (default)")
    subparsers.add_parser("lights", help="List the lights on the bridge")

    preview = subparsers.add_parser("preview", help="Print the computed light states of a day")
    preview.add_argument(
        "--schedule",
        help="Schedule name (default: the first schedule)",
    )
    preview.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Day to preview as YYYY-MM-DD (default: today)",
    )
    preview.add_argument(
        "--step",
        type=int,
        default=30,
        help="Minutes between two rows",
    )
    return parser


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def _list_lights(configuration: Configuration) -> None:
    if not configuration.bridge.ip or not configuration.bridge.username:
        raise ConfigurationError(f"Bridge not configured in {configuration.path}")
    async with aiohttp.ClientSession() as session:
        bridge = HueBridge(session, configuration.bridge.ip, configuration.bridge.username)
        devices = await bridge.list_devices()
    print(format_light_table(devices, configuration))


async def _preview(configuration: Configuration, name: Optional[str], day: Optional[date], step: int) -> None:
    if name:
        light_schedule = configuration.schedule_by_name(name)
        if light_schedule is None:
            raise ConfigurationError(f"No schedule named '{name}'")
    elif configuration.schedules:
        light_schedule = configuration.schedules[0]
    else:
        raise ConfigurationError("No schedules configured")

    async with aiohttp.ClientSession() as session:
        location = await resolve_location(configuration, session)

    day = day or datetime.now(location.tzinfo).date()
    schedule = build_schedule(light_schedule, location, day)
    print(f"Schedule '{schedule.name}' for {day.isoformat()}")
    print(f"  sunrise {schedule.sunrise}")
    print(f"  sunset  {schedule.sunset}")
    for point in schedule.before_sunrise:
        print(f"  before sunrise {point}")
    for point in schedule.after_sunset:
        print(f"  after sunset   {point}")
    print()
    for timestamp, state in preview_day(schedule, timedelta(minutes=max(1, step))):
        print(f"{timestamp.strftime('%H:%M')}  {state}")


def main(argv=None) -> int:
    args = _build_arg_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        configuration = initialize_configuration(args.config)
        if args.command == "lights":
            asyncio.run(_list_lights(configuration))
        elif args.command == "preview":
            asyncio.run(_preview(configuration, args.schedule, args.date, args.step))
        else:
            asyncio.run(run_daemon(configuration))
    except ConfigurationError as e:
        logger.critical(f"⚙ {e}")
        return 1
    except DeviceError as e:
        logger.error(f"Bridge error: {e}")
        return 1
    except IntervalConsistencyError as e:
        logger.critical(f"Schedule consistency error: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
