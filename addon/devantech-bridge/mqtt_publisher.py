#!/usr/bin/env python3
"""
MQTT publisher with an in-memory offline buffer and replay.
"""

import asyncio
import json
import logging
import time
from collections import deque
from typing import Any, Callable

from config import (
    MQTT_AVAILABLE,
    MQTT_CONNECT_TIMEOUT,
    MQTT_HEALTH_CHECK_INTERVAL,
    MQTT_HOST,
    MQTT_NAMESPACE,
    MQTT_OFFLINE_BUFFER,
    MQTT_PASSWORD,
    MQTT_PORT,
    MQTT_PUBLISH_QOS,
    MQTT_USERNAME,
)

if MQTT_AVAILABLE:
    import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes, int, bool], None]


class MQTTPublisher:
    """paho-mqtt wrapper used as the host bus sink."""

    # MQTT return codes
    RC_CODES = {
        0: "Connection successful",
        1: "Incorrect protocol version",
        2: "Invalid client identifier",
        3: "Server unavailable",
        4: "Bad username or password",
        5: "Not authorized",
    }

    CONNECT_TIMEOUT = MQTT_CONNECT_TIMEOUT
    HEALTH_CHECK_INTERVAL = MQTT_HEALTH_CHECK_INTERVAL
    PUBLISH_LOG_EVERY = 100

    def __init__(
        self,
        client_id: str = "bridge",
        namespace: str = MQTT_NAMESPACE,
        buffer_size: int = MQTT_OFFLINE_BUFFER,
    ):
        self.client_id = client_id
        self.namespace = namespace
        self.client: Any = None
        self.connected = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handlers: dict[str, tuple[MessageHandler, int]] = {}
        self._connect_handlers: list[Callable[[], None]] = []
        self._buffer: deque[tuple[str, str, bool]] = deque(maxlen=max(1, buffer_size))
        self._replay_task: asyncio.Task[Any] | None = None
        self._health_check_task: asyncio.Task[Any] | None = None

        # Statistics
        self.publish_count = 0
        self.publish_success = 0
        self.publish_failed = 0
        self.last_publish_time: float = 0
        self.last_error_time: float = 0
        self.last_error_msg: str = ""
        self.reconnect_attempts = 0

    @property
    def availability_topic(self) -> str:
        return f"{self.namespace}/availability"

    def topic(self, suffix: str) -> str:
        return f"{self.namespace}/{suffix}"

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the event loop that paho callbacks must hop onto."""
        self._loop = loop

    def connect(self, timeout: float | None = None) -> bool:
        """Connect to the broker, waiting up to ``timeout`` seconds."""
        if not MQTT_AVAILABLE:
            logger.error("MQTT: paho-mqtt is not installed")
            return False

        if timeout is None:
            timeout = self.CONNECT_TIMEOUT

        try:
            self.client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION1,
                client_id=f"{self.namespace}_{self.client_id}",
                protocol=mqtt.MQTTv311
            )
            if MQTT_USERNAME:
                self.client.username_pw_set(MQTT_USERNAME, MQTT_PASSWORD)
            self.client.will_set(self.availability_topic, "offline", retain=True)

            self.client.on_connect = self._on_connect
            self.client.on_disconnect = self._on_disconnect
            self.client.on_publish = self._on_publish
            self._install_handlers()

            logger.info(
                "MQTT: connecting to %s:%s (timeout %ss)",
                MQTT_HOST, MQTT_PORT, timeout,
            )
            self.client.connect(MQTT_HOST, MQTT_PORT, 60)
            self.client.loop_start()

            start = time.time()
            while not self.connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self.connected:
                logger.info("MQTT: connected to %s:%s", MQTT_HOST, MQTT_PORT)
                self.reconnect_attempts = 0
                return True
            logger.error("MQTT: connect timed out after %ss", timeout)
            self._cleanup_client()
            return False

        except Exception as e:  # pylint: disable=broad-exception-caught
            logger.error("MQTT: connect failed: %s", e)
            self._cleanup_client()
            return False

    def _cleanup_client(self) -> None:
        """Tear down the paho client, ignoring errors from a dead socket."""
        if self.client:
            try:
                self.client.loop_stop()
                self.client.disconnect()
            except Exception as e:  # pylint: disable=broad-exception-caught
                logger.debug("MQTT: cleanup error ignored: %s", e)
            self.client = None
        self.connected = False

    def disconnect(self) -> None:
        """Publish offline availability and close the client."""
        if self.client and self.connected:
            self.client.publish(self.availability_topic, "offline", retain=True, qos=1)
        if self._health_check_task and not self._health_check_task.done():
            self._health_check_task.cancel()
        self._health_check_task = None
        self._cleanup_client()

    def _on_connect(
        self, client: Any, userdata: Any, flags: Any, rc: int
    ) -> None:
        rc_msg = self.RC_CODES.get(rc, f"Unknown error ({rc})")

        if rc != 0:
            logger.error("MQTT: connection refused: %s", rc_msg)
            self.connected = False
            self.last_error_time = time.time()
            self.last_error_msg = rc_msg
            return

        logger.info("MQTT: connected (flags=%s)", flags)
        self.connected = True
        self.reconnect_attempts = 0
        client.publish(self.availability_topic, "online", retain=True, qos=1)

        # Subscriptions do not survive a clean reconnect
        for topic, (_handler, qos) in self._handlers.items():
            client.subscribe(topic, qos=qos)

        # Owners republish state the offline buffer may have evicted
        if self._loop is not None:
            for callback in self._connect_handlers:
                self._loop.call_soon_threadsafe(callback)

        if self._buffer and self._loop is not None:
            self._loop.call_soon_threadsafe(self._start_replay)

    def _on_disconnect(
        self, client: Any, userdata: Any, rc: int
    ) -> None:
        self.connected = False
        if rc == 0:
            logger.info("MQTT: disconnected (clean)")
        else:
            logger.warning("MQTT: unexpected disconnect (rc=%s)", rc)
            self.last_error_time = time.time()
            self.last_error_msg = f"Unexpected disconnect (rc={rc})"

    def _on_publish(self, client: Any, userdata: Any, mid: int) -> None:
        self.publish_success += 1
        self.last_publish_time = time.time()
        if self.publish_success % self.PUBLISH_LOG_EVERY == 0:
            logger.info(
                "MQTT: stats: %s OK, %s FAIL of %s total",
                self.publish_success, self.publish_failed, self.publish_count,
            )

    def is_ready(self) -> bool:
        """True when the client is connected."""
        return self.client is not None and self.connected

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def add_message_handler(
        self, *, topic: str, handler: MessageHandler, qos: int = 1
    ) -> None:
        """Register ``handler(topic, payload, qos, retain)`` for ``topic``.

        The handler runs on paho's network thread.
        """
        self._handlers[topic] = (handler, qos)
        if self.client is None:
            return

        def _callback(_client: Any, _userdata: Any, message: Any) -> None:
            handler(message.topic, message.payload, message.qos, bool(message.retain))

        self.client.message_callback_add(topic, _callback)
        if self.connected:
            self.client.subscribe(topic, qos=qos)

    def add_connect_handler(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` on the event loop after every successful connect."""
        self._connect_handlers.append(callback)

    def _install_handlers(self) -> None:
        for topic, (handler, qos) in list(self._handlers.items()):
            self.add_message_handler(topic=topic, handler=handler, qos=qos)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish_json(
        self, topic: str, payload: dict[str, Any], *, retain: bool = False
    ) -> bool:
        """Publish ``payload`` as JSON; buffer it while offline."""
        return self.publish_raw(topic, json.dumps(payload, ensure_ascii=True), retain=retain)

    def publish_raw(self, topic: str, payload: str, *, retain: bool = False) -> bool:
        if not self.is_ready():
            self._buffer.append((topic, payload, retain))
            self.publish_failed += 1
            if self.publish_failed % self.PUBLISH_LOG_EVERY == 1:
                logger.warning(
                    "MQTT: offline, %d message(s) buffered", len(self._buffer)
                )
            return False

        self.publish_count += 1
        try:
            result = self.client.publish(
                topic, payload, qos=MQTT_PUBLISH_QOS, retain=retain
            )
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._buffer.append((topic, payload, retain))
            self.publish_failed += 1
            self.last_error_time = time.time()
            self.last_error_msg = str(e)
            logger.error("MQTT: publish exception: %s", e)
            return False

        if result.rc != 0:
            self._buffer.append((topic, payload, retain))
            self.publish_failed += 1
            logger.error("MQTT: publish failed rc=%s", result.rc)
            return False
        logger.debug("MQTT: -> %s (%d bytes)", topic, len(payload))
        return True

    def buffered(self) -> int:
        return len(self._buffer)

    def _start_replay(self) -> None:
        if self._replay_task is None or self._replay_task.done():
            self._replay_task = asyncio.ensure_future(self.replay_buffer())

    async def replay_buffer(self) -> int:
        """Flush messages buffered while offline, oldest first."""
        replayed = 0
        while self._buffer and self.is_ready():
            topic, payload, retain = self._buffer.popleft()
            if not self.publish_raw(topic, payload, retain=retain):
                break
            replayed += 1
            await asyncio.sleep(0)
        if replayed:
            logger.info("MQTT: replayed %d buffered message(s)", replayed)
        return replayed

    # ------------------------------------------------------------------
    # Health check
    # ------------------------------------------------------------------

    async def health_check_loop(self) -> None:
        """Reconnect periodically while the broker is unreachable."""
        logger.info(
            "MQTT: health check started (interval %ss)", self.HEALTH_CHECK_INTERVAL
        )
        while True:
            await asyncio.sleep(self.HEALTH_CHECK_INTERVAL)
            if self.connected:
                continue
            self.reconnect_attempts += 1
            logger.warning(
                "MQTT: health check - reconnect attempt #%s", self.reconnect_attempts
            )
            ok = await asyncio.to_thread(self.connect, self.CONNECT_TIMEOUT)
            if ok:
                logger.info("MQTT: reconnected")
            else:
                logger.warning(
                    "MQTT: reconnect failed, next attempt in %ss",
                    self.HEALTH_CHECK_INTERVAL,
                )

    async def start_health_check(self) -> None:
        """Start the health check as a background task."""
        if self._health_check_task is None or self._health_check_task.done():
            self._health_check_task = asyncio.create_task(self.health_check_loop())
