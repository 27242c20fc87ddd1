#!/usr/bin/env python3
"""
Devantech bridge - wires listener, scheduler, command connections and MQTT.
"""

# pylint: disable=too-many-instance-attributes,broad-exception-caught

import asyncio
import logging
from typing import Any

from command_connection import CommandConnectionManager
from config import (
    CLIENT_IP_FILTER,
    STATUS_API_HOST,
    STATUS_API_PORT,
    STATUS_LISTEN_HOST,
    STATUS_LISTENER_PORT,
    TRANSMIT_QUEUE_HEARTBEAT,
)
from models import BridgeOptions
from mqtt_publisher import MQTTPublisher
from put_handler import PutHandler
from registry import ModuleRegistry
from scheduler import CommandScheduler
from status_api import StatusAPIServer
from status_listener import StatusListener

logger = logging.getLogger(__name__)


class DevantechBridge:
    """Owns every component; one instance per process."""

    def __init__(
        self,
        options: BridgeOptions,
        publisher: MQTTPublisher | None = None,
    ):
        self.options = options
        self.mqtt_publisher = publisher or MQTTPublisher()
        self.registry = ModuleRegistry(options, self.mqtt_publisher)
        self.connections = CommandConnectionManager()
        self.scheduler = CommandScheduler(
            self.registry,
            heartbeat_ms=options.transmit_queue_heartbeat or TRANSMIT_QUEUE_HEARTBEAT,
        )
        self.listener = StatusListener(
            self.registry,
            self.connections,
            self.mqtt_publisher,
            host=STATUS_LISTEN_HOST,
            port=options.status_listener_port or STATUS_LISTENER_PORT,
            client_ip_filter=options.client_ip_filter or CLIENT_IP_FILTER,
        )
        self.put_handler = PutHandler(self.registry, self.scheduler)
        self._status_api: StatusAPIServer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    async def start(self) -> None:
        """Start all components; returns once the listener is bound."""
        self._loop = asyncio.get_running_loop()
        self.mqtt_publisher.attach_loop(self._loop)
        self.mqtt_publisher.add_connect_handler(self.registry.republish_metadata)
        self.put_handler.setup_mqtt(self.mqtt_publisher, self._loop)

        if not self.mqtt_publisher.connect():
            logger.warning("MQTT: initial connect failed, health check will retry")
        await self.mqtt_publisher.start_health_check()

        if STATUS_API_PORT and STATUS_API_PORT > 0:
            try:
                self._status_api = StatusAPIServer(
                    host=STATUS_API_HOST, port=STATUS_API_PORT, bridge=self
                )
                self._status_api.start()
                logger.info("Status API listening on http://%s:%s", STATUS_API_HOST, STATUS_API_PORT)
            except Exception as e:
                logger.error("Status API start failed: %s", e)
                self._status_api = None

        await self.listener.start()
        self.scheduler.start()

    async def run(self) -> None:
        await self.start()
        try:
            await self.listener.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.listener.stop()
        await self.connections.close_all(list(self.registry.modules()))
        if self._status_api is not None:
            self._status_api.stop()
            self._status_api = None
        self.mqtt_publisher.disconnect()
        logger.info("Bridge stopped")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict[str, Any]:
        status: dict[str, Any] = {}
        for module in self.registry.modules():
            status[module.id] = {
                "address": module.ip_address,
                "deviceId": module.device_id,
                "relayCount": module.relay_count,
                "switchCount": module.switch_count,
                "connected": module.command_connection is not None,
                "listening": module.listener_connection is not None,
                "queued": len(module.command_queue),
                "inflight": module.inflight.command if module.inflight else None,
            }
        return status

    def get_health(self) -> dict[str, Any]:
        return {
            "ok": True,
            "modules": len(self.registry),
            "mqtt": self.mqtt_publisher.is_ready(),
        }
