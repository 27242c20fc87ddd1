"""PutHandler - turns PUT requests on channel paths into queued commands."""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from errors import BridgeError, DisconnectedCommandPath
from models import CommandCallback, Direction, Module, PutResult
from mqtt_publisher import MQTTPublisher
from registry import ModuleRegistry, ip_from_module_id
from scheduler import CommandScheduler

logger = logging.getLogger(__name__)


def _get_current_timestamp() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def coerce_state(value: Any) -> bool:
    """Interpret a PUT value as the desired relay state."""
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("", "0", "false", "off"):
            return False
        if re.fullmatch(r"-?\d+(\.\d+)?", text):
            return float(text) != 0
        return True
    return bool(value)


def split_path(path: str) -> tuple[str, str]:
    """``electrical.switches.bank.<module>.<channel>[.state]`` -> (module, channel)."""
    parts = path.split(".")
    module_id = parts[3] if len(parts) >= 4 else ""
    channel_index = parts[4] if len(parts) >= 5 else ""
    return module_id, channel_index


class PutHandler:
    """Resolves PUT targets and enqueues the channel's ON/OFF command."""

    def __init__(self, registry: ModuleRegistry, scheduler: CommandScheduler) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._publisher: MQTTPublisher | None = None

    def handle_put(self, path: str, value: Any, callback: CommandCallback) -> PutResult:
        logger.debug("PUT: %s = %r", path, value)
        module_id, channel_index = split_path(path)
        return self.request(module_id, channel_index, coerce_state(value), callback)

    def request(
        self,
        module_id: str,
        channel_index: str,
        state: bool,
        callback: CommandCallback,
    ) -> PutResult:
        """Enqueue a state change; PENDING when queued, COMPLETED/400 otherwise."""
        try:
            module, command = self._resolve(module_id, channel_index, state)
        except (BridgeError, LookupError, ValueError) as e:
            logger.debug("PUT: request cannot be actioned (%s)", e)
            return PutResult.completed(400)
        self._scheduler.enqueue(module, command, callback)
        return PutResult.pending()

    def _resolve(self, module_id: str, channel_index: str, state: bool) -> tuple[Module, str]:
        module = self._registry.get(module_id)
        if module is None:
            ip_address = ip_from_module_id(module_id)
            if not self._registry.is_configured(ip_address):
                raise LookupError(f"unknown module '{module_id}'")
            module = self._registry.get_or_create(ip_address)
        if module.command_connection is None:
            raise DisconnectedCommandPath(
                f"module '{module.ip_address}' has no open command connection"
            )
        channel = module.channels.get(channel_index.upper())
        if channel is None:
            raise LookupError(f"module '{module_id}' has no channel '{channel_index}'")
        command = channel.command_for(Direction.ON if state else Direction.OFF)
        if not command:
            raise LookupError(f"channel '{channel_index}' of '{module_id}' is not switchable")
        return module, command

    # ------------------------------------------------------------------
    # MQTT request/result topics
    # ------------------------------------------------------------------

    @property
    def request_topic(self) -> str:
        return self._publisher.topic("put") if self._publisher else ""

    @property
    def result_topic(self) -> str:
        return self._publisher.topic("put/result") if self._publisher else ""

    def setup_mqtt(self, publisher: MQTTPublisher, loop: asyncio.AbstractEventLoop) -> None:
        self._publisher = publisher

        def _handler(_topic: str, payload: bytes, _qos: int, retain: bool) -> None:
            loop.call_soon_threadsafe(self.on_mqtt_message, payload, retain)

        publisher.add_message_handler(topic=self.request_topic, handler=_handler, qos=1)
        logger.info("PUT: MQTT enabled (request=%s result=%s)", self.request_topic, self.result_topic)

    def on_mqtt_message(self, payload: bytes, retain: bool = False) -> None:
        if retain:
            logger.debug("PUT: ignoring retained request")
            return
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            self.publish_result(None, None, PutResult.completed(400), error="bad_json")
            return
        if not isinstance(data, dict):
            self.publish_result(None, None, PutResult.completed(400), error="bad_json")
            return

        request_id = data.get("request_id")
        path = str(data.get("path") or "").strip()
        if not path or "value" not in data:
            self.publish_result(request_id, path or None, PutResult.completed(400),
                                error="missing_fields")
            return

        def _done(result: PutResult) -> None:
            self.publish_result(request_id, path, result)

        result = self.handle_put(path, data["value"], _done)
        self.publish_result(request_id, path, result)

    def publish_result(
        self,
        request_id: Any,
        path: str | None,
        result: PutResult,
        *,
        error: str | None = None,
    ) -> None:
        if self._publisher is None:
            return
        payload: dict[str, Any] = {"request_id": request_id, "path": path}
        payload.update(result.as_dict())
        if error:
            payload["error"] = error
        payload["ts"] = _get_current_timestamp()
        self._publisher.publish_json(self.result_topic, payload)
