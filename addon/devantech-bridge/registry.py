"""ModuleRegistry - single owner of the live Module records."""

from __future__ import annotations

import logging
from typing import Iterator

from delta import Delta, DeltaSink
from device_table import resolve_command
from errors import UnknownDevice
from models import (
    BridgeOptions,
    Channel,
    ChannelOption,
    ChannelType,
    DeviceDefinition,
    Direction,
    Module,
    ModuleOptions,
)

logger = logging.getLogger(__name__)


def module_id_from_ip(ip_address: str) -> str:
    """``192.168.1.5`` -> ``192168001005``.

    Fixed width keeps lexical order equal to numeric address order.
    """
    octets = ip_address.strip().split(".")
    if len(octets) != 4:
        raise ValueError(f"not an IPv4 address: {ip_address!r}")
    values = []
    for octet in octets:
        if not octet.isdigit() or int(octet) > 255:
            raise ValueError(f"not an IPv4 address: {ip_address!r}")
        values.append(int(octet))
    return "".join(f"{v:03d}" for v in values)


def ip_from_module_id(module_id: str) -> str:
    if len(module_id) != 12 or not module_id.isdigit():
        raise ValueError(f"not a module id: {module_id!r}")
    return ".".join(str(int(module_id[i:i + 3])) for i in range(0, 12, 3))


def _channel_type(index: str) -> ChannelType:
    return ChannelType.SWITCH if index.upper().endswith("S") else ChannelType.RELAY


def _index_number(index: str) -> int | None:
    digits = "".join(ch for ch in index if ch.isdigit())
    return int(digits) if digits else None


class ModuleRegistry:
    """Maps canonical module IDs to Module records, creating them lazily."""

    def __init__(self, options: BridgeOptions, sink: DeltaSink):
        self._options = options
        self._sink = sink
        self._modules: dict[str, Module] = {}

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)

    def get(self, module_id: str) -> Module | None:
        return self._modules.get(module_id)

    def modules(self) -> Iterator[Module]:
        # Snapshot so callers may trigger creation while iterating
        return iter(list(self._modules.values()))

    def is_configured(self, ip_address: str) -> bool:
        return self._options.module_options(ip_address) is not None

    def get_or_create(self, ip_address: str) -> Module:
        """Return the Module for ``ip_address``, creating it on first contact."""
        module_id = module_id_from_ip(ip_address)
        module = self._modules.get(module_id)
        if module is not None:
            return module

        module = self._build_module(module_id, ip_address)
        self.publish_metadata(module)
        self._modules[module_id] = module
        logger.info(
            "Registry: created module %s (%s, device %s, %d relay(s), %d switch(es))",
            module.id,
            module.ip_address,
            module.device_id,
            module.relay_count,
            module.switch_count,
        )
        return module

    # ------------------------------------------------------------------

    def _build_module(self, module_id: str, ip_address: str) -> Module:
        mopts = self._options.module_options(ip_address) or ModuleOptions(ip_address)
        device_id = mopts.device_id or self._options.default_device_id
        device = self._options.device(device_id)
        if device is None:
            raise UnknownDevice(device_id, ip_address)

        module = Module(
            id=module_id,
            ip_address=ip_address,
            device_id=device.id,
            description=mopts.description or f"Devantech DS switchbank at '{ip_address}'",
            command_port=mopts.command_port or self._options.default_command_port,
        )
        module.channels = self._build_channels(module, device, mopts.channels)
        return module

    def _build_channels(
        self,
        module: Module,
        device: DeviceDefinition,
        overrides: tuple[ChannelOption, ...],
    ) -> dict[str, Channel]:
        layout: dict[str, tuple[ChannelType, int, str | None]] = {}
        for n in range(1, (device.relays or 0) + 1):
            layout[f"{n}R"] = (ChannelType.RELAY, n, None)
        for n in range(1, (device.switches or 0) + 1):
            layout[f"{n}S"] = (ChannelType.SWITCH, n, None)

        for option in overrides:
            current = layout.get(option.index)
            ctype = current[0] if current else _channel_type(option.index)
            address = option.address or (current[1] if current else _index_number(option.index))
            if not address:
                logger.warning(
                    "Registry: module %s channel %s has no address, ignored",
                    module.id, option.index,
                )
                continue
            layout[option.index] = (ctype, address, option.description)

        channels: dict[str, Channel] = {}
        for index, (ctype, address, description) in layout.items():
            on_command = off_command = None
            if ctype is ChannelType.RELAY:
                # UnresolvedCommand here aborts the whole module
                on_command = resolve_command(device, address, Direction.ON)
                off_command = resolve_command(device, address, Direction.OFF)
            channels[index] = Channel(
                index=index,
                type=ctype,
                address=address,
                path=f"{module.bank_path}.{index}",
                description=description or f"Channel {index}",
                on_command=on_command,
                off_command=off_command,
            )
        return channels

    def republish_metadata(self) -> int:
        """Publish metadata for every known module again; returns the count."""
        count = 0
        for module in self.modules():
            self.publish_metadata(module)
            count += 1
        if count:
            logger.info("Registry: republished metadata for %d module(s)", count)
        return count

    def publish_metadata(self, module: Module) -> None:
        delta = Delta(self._sink)
        delta.add_meta(module.bank_path, {
            "description": module.description,
            "instance": module.id,
            "device": module.device_id,
            "shortName": module.id,
            "longName": f"Module {module.id}",
            "displayName": f"Module {module.id}",
        })
        for channel in module.channels.values():
            label = f"[{module.id},{channel.index}]"
            delta.add_meta(channel.state_path, {
                "description": channel.description,
                "index": channel.index,
                "shortName": label,
                "longName": label,
                "displayName": channel.description or label,
                "unit": "Binary switch state (0/1)",
                "type": channel.type.value,
            })
        delta.commit().clear()
