#!/usr/bin/env python3
"""
Devantech bridge - application entry point.
"""

import asyncio
import logging
import sys

from bridge import DevantechBridge
from config import (
    LOG_LEVEL,
    MQTT_AVAILABLE,
    MQTT_HOST,
    MQTT_PORT,
    OPTIONS_PATH,
    STATUS_LISTENER_PORT,
    TRANSMIT_QUEUE_HEARTBEAT,
)
from options import load_options

# Logging setup
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)


def check_requirements():
    """Warn about missing optional libraries."""
    if not MQTT_AVAILABLE:
        logger.warning(
            "paho-mqtt is not installed; host bus updates will only be buffered"
        )


async def main():
    """Load options and run the bridge until interrupted."""
    logger.info("=" * 60)
    logger.info("Devantech DS bridge")
    logger.info("=" * 60)

    check_requirements()

    try:
        options = load_options(OPTIONS_PATH)
    except ValueError as e:
        logger.error("Invalid options file %s: %s", OPTIONS_PATH, e)
        sys.exit(1)

    logger.info("Configuration:")
    logger.info("   Options: %s", OPTIONS_PATH)
    logger.info("   Status listener port: %s", options.status_listener_port or STATUS_LISTENER_PORT)
    logger.info("   Heartbeat: %s ms", options.transmit_queue_heartbeat or TRANSMIT_QUEUE_HEARTBEAT)
    logger.info("   MQTT: %s:%s", MQTT_HOST, MQTT_PORT)
    logger.info("   Log level: %s", LOG_LEVEL)

    try:
        bridge = DevantechBridge(options)
        await bridge.run()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)
