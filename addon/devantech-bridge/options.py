#!/usr/bin/env python3
"""
Loading of the module/device options file.

The file is JSON with the shape::

    {
      "defaultDeviceId": "DS",
      "defaultCommandPort": 17123,
      "modules": [
        {"ipAddress": "192.168.1.5", "deviceId": "DS2824",
         "description": "Forward bank",
         "channels": [{"index": "1R", "description": "Deck lights"}]}
      ],
      "devices": [
        {"id": "DS", "relays": 32, "switches": 8,
         "channels": [{"address": 0, "oncommand": "SR {c} ON",
                       "offcommand": "SR {c} OFF"}]}
      ]
    }

User devices are tried before the built-in defaults, so a user definition
with the same id wins.
"""

import json
import logging
import re
from typing import Any

from config import DEFAULT_COMMAND_PORT, DEFAULT_DEVICE_ID
from models import (
    BridgeOptions,
    ChannelOption,
    ChannelTemplate,
    DeviceDefinition,
    ModuleOptions,
)

logger = logging.getLogger(__name__)

DEFAULT_DEVICES: tuple[DeviceDefinition, ...] = (
    DeviceDefinition(
        id="DS",
        relays=32,
        switches=8,
        channels=(ChannelTemplate(0, "SR {c} ON", "SR {c} OFF"),),
    ),
    DeviceDefinition(
        id="DS2824",
        relays=24,
        switches=8,
        channels=(ChannelTemplate(0, "SR {c} ON", "SR {c} OFF"),),
    ),
)


def _optional_int(raw: Any, what: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{what}: expected a number, got {raw!r}") from exc


def _command_text(raw: Any, what: str) -> str:
    text = str(raw or "")
    if not text.isascii():
        raise ValueError(f"{what}: commands must be ASCII, got {text!r}")
    return text


def _parse_template(raw: dict[str, Any]) -> ChannelTemplate:
    return ChannelTemplate(
        address=_optional_int(raw.get("address"), "device channel address") or 0,
        oncommand=_command_text(raw.get("oncommand"), "oncommand"),
        offcommand=_command_text(raw.get("offcommand"), "offcommand"),
    )


def parse_device(raw: dict[str, Any]) -> DeviceDefinition:
    """Build a DeviceDefinition from its JSON form."""
    device_id = str(raw.get("id") or "").strip()
    if not device_id:
        raise ValueError("device definition without id")
    templates = raw.get("channels") or []
    if not isinstance(templates, list) or not templates:
        raise ValueError(f"device '{device_id}': channels must be a non-empty list")
    return DeviceDefinition(
        id=device_id,
        relays=_optional_int(raw.get("relays"), f"device '{device_id}' relays"),
        switches=_optional_int(raw.get("switches"), f"device '{device_id}' switches"),
        channels=tuple(_parse_template(t) for t in templates),
    )


def parse_module(raw: dict[str, Any]) -> ModuleOptions:
    """Build ModuleOptions from its JSON form."""
    ip_address = str(raw.get("ipAddress") or "").strip()
    if not ip_address:
        raise ValueError("module definition without ipAddress")
    channels = []
    for entry in raw.get("channels") or []:
        index = str(entry.get("index") or "").strip()
        if not index:
            continue
        channels.append(
            ChannelOption(
                index=index.upper(),
                address=_optional_int(entry.get("address"), f"channel {index} address"),
                description=entry.get("description"),
            )
        )
    return ModuleOptions(
        ip_address=ip_address,
        device_id=(str(raw["deviceId"]) if raw.get("deviceId") else None),
        command_port=_optional_int(raw.get("commandPort"), f"module {ip_address} commandPort"),
        description=raw.get("description"),
        channels=tuple(channels),
    )


def _optional_regex(raw: Any, what: str) -> str | None:
    if not raw:
        return None
    try:
        re.compile(str(raw))
    except re.error as exc:
        raise ValueError(f"{what}: invalid regular expression {raw!r} ({exc})") from exc
    return str(raw)


def parse_options(data: dict[str, Any]) -> BridgeOptions:
    """Turn the decoded options document into BridgeOptions."""
    if not isinstance(data, dict):
        raise ValueError("options must be a JSON object")
    user_devices = tuple(parse_device(d) for d in data.get("devices") or [])
    modules = tuple(parse_module(m) for m in data.get("modules") or [])
    return BridgeOptions(
        modules=modules,
        devices=user_devices + DEFAULT_DEVICES,
        default_device_id=str(data.get("defaultDeviceId") or DEFAULT_DEVICE_ID),
        default_command_port=(
            _optional_int(data.get("defaultCommandPort"), "defaultCommandPort")
            or DEFAULT_COMMAND_PORT
        ),
        client_ip_filter=_optional_regex(data.get("clientIpFilter"), "clientIpFilter"),
        status_listener_port=_optional_int(
            data.get("statusListenerPort"), "statusListenerPort"),
        transmit_queue_heartbeat=_optional_int(
            data.get("transmitQueueHeartbeat"), "transmitQueueHeartbeat"),
    )


def load_options(path: str) -> BridgeOptions:
    """Load options from ``path``; a missing file means defaults only."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.info("Options: %s not found, using built-in devices only", path)
        data = {}
    options = parse_options(data)
    logger.info(
        "Options: %d module override(s), devices: %s",
        len(options.modules),
        ", ".join(d.id for d in options.devices),
    )
    return options
