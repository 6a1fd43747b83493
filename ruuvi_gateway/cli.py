#!/usr/bin/env python3
"""
Ruuvi BLE Gateway - Command line entry point

Scans for Ruuvi sensor advertisements and publishes decoded samples to the
console, an MQTT broker or an HTTP endpoint.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .batching import BatchPublishBehaviour
from .config import (
    build_device_collection,
    build_http_options,
    build_listener_options,
    build_mqtt_options,
    build_publisher_options,
    load_config,
    validate_config,
)
from .console import ConsolePublisher
from .constants import DEFAULT_LOG_LEVEL, DEFAULT_SCANNING_MODE, ICON_INFO
from .devices import DeviceCollection
from .http_sink import HttpPublisher
from .listener import SampleListener
from .mqtt import MqttPublisher
from .publisher import PublisherPipeline
from .scanner import BleakAdvertisementSource


def setup_logging(log_level: str = DEFAULT_LOG_LEVEL) -> logging.Logger:
    """Configure logging with appropriate level.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        Configured logger instance
    """
    # Package logger, so module loggers share the handler
    logger = logging.getLogger('ruuvi_gateway')

    numeric_level = getattr(logging, log_level.upper(), logging.WARNING)
    logger.setLevel(numeric_level)

    handler = logging.StreamHandler()
    handler.setLevel(numeric_level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def create_publisher(
    config: dict,
    listener: SampleListener,
    devices: DeviceCollection,
    logger: logging.Logger
) -> PublisherPipeline:
    """Create the publisher for the configured destination."""
    options = build_publisher_options(config)
    destination = config.get('destination', 'console')

    if destination == 'mqtt':
        return MqttPublisher(listener, build_mqtt_options(config), options, logger=logger)
    if destination == 'http':
        return HttpPublisher(listener, build_http_options(config), options, logger=logger)
    return ConsolePublisher(listener, options, device_resolver=devices, logger=logger)


def _install_signal_handlers(stop_event: asyncio.Event, logger: logging.Logger) -> None:
    """Set stop_event on SIGINT/SIGTERM for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def handle_signal(signum):
        logger.info(f"{ICON_INFO} Received signal {signum}, shutting down gracefully...")
        stop_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, handle_signal, signum)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(signum, lambda s, frame: loop.call_soon_threadsafe(handle_signal, s))


async def run_gateway(config: dict, logger: logging.Logger) -> None:
    """Run the gateway until SIGINT/SIGTERM."""
    devices = build_device_collection(config)
    source = BleakAdvertisementSource(
        adapter=config.get('bluetooth_adapter'),
        scanning_mode=config.get('scanning_mode', DEFAULT_SCANNING_MODE),
        allow_duplicates=config.get('allow_duplicate_advertisements', False),
        logger=logger
    )
    listener = SampleListener(source, build_listener_options(config), devices, logger=logger)
    publisher = create_publisher(config, listener, devices, logger)

    logger.info("Starting Ruuvi BLE Gateway")
    logger.info(f"Known devices: {len(devices)}")
    for device in devices.devices():
        logger.debug(f"Known device {device.mac_address}: id={device.device_id}, name={device.display_name}")

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event, logger)
    await publisher.run(stop_event)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Ruuvi BLE Gateway',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print samples to the console
  %(prog)s -c config.json

  # Publish to the configured MQTT broker every 30 seconds, latest sample per device
  %(prog)s -c config.json --destination mqtt --publish-interval 30 --publish-behaviour LatestSampleOnly

  # Run with DEBUG level logging
  %(prog)s -c config.json --log-level DEBUG

Configuration file format: See config.example.json
        """
    )

    parser.add_argument(
        '-c', '--config',
        required=True,
        help='Path to configuration JSON file'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=DEFAULT_LOG_LEVEL,
        help=f'Set logging level (default: {DEFAULT_LOG_LEVEL})'
    )

    parser.add_argument(
        '--destination',
        choices=['console', 'mqtt', 'http'],
        help='Override publish destination'
    )

    parser.add_argument(
        '--publish-interval',
        type=float,
        help='Override publish interval in seconds (0=immediate, >0=batched)'
    )

    parser.add_argument(
        '--publish-behaviour',
        choices=[behaviour.value for behaviour in BatchPublishBehaviour],
        help='Override which samples per device are included in a batch'
    )

    parser.add_argument(
        '--known-devices',
        action='store_true',
        help='Only publish samples from devices listed in the configuration'
    )

    args = parser.parse_args(argv)

    logger = setup_logging(log_level=args.log_level)

    try:
        logger.info(f"Loading configuration from: {args.config}")
        config = load_config(args.config)

        # Apply command-line overrides
        if args.destination:
            config['destination'] = args.destination
        if args.publish_interval is not None:
            config['publish_interval_sec'] = args.publish_interval
        if args.publish_behaviour:
            config['publish_behaviour'] = args.publish_behaviour
        if args.known_devices:
            config['known_devices_only'] = True
        validate_config(config)

        asyncio.run(run_gateway(config, logger))

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=(args.log_level == 'DEBUG'))
        sys.exit(1)


if __name__ == '__main__':
    main()
