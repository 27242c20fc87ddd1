#!/usr/bin/env python3
"""
Data models for the Devantech bridge.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from config import SWITCHBANK_ROOT


# ============================================================================
# Enums
# ============================================================================

class ChannelType(Enum):
    """Kind of module channel."""
    RELAY = "relay"
    SWITCH = "switch"


class Direction(Enum):
    """Requested relay state."""
    ON = "on"
    OFF = "off"


class PutState(Enum):
    """State reported back to a PUT caller."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ConnectionState(Enum):
    """Lifecycle of an outbound command connection."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


# ============================================================================
# Configuration (immutable, loaded from the options file)
# ============================================================================

@dataclass(frozen=True)
class ChannelTemplate:
    """ON/OFF command template for one device channel address."""
    address: int
    oncommand: str
    offcommand: str


@dataclass(frozen=True)
class DeviceDefinition:
    """A Devantech device type."""
    id: str
    channels: tuple[ChannelTemplate, ...]
    relays: int | None = None
    switches: int | None = None


@dataclass(frozen=True)
class ChannelOption:
    """Per-module channel override."""
    index: str
    address: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class ModuleOptions:
    """Per-module configuration keyed by IP address."""
    ip_address: str
    device_id: str | None = None
    command_port: int | None = None
    description: str | None = None
    channels: tuple[ChannelOption, ...] = ()


@dataclass(frozen=True)
class BridgeOptions:
    """Everything the registry needs to build modules."""
    modules: tuple[ModuleOptions, ...]
    devices: tuple[DeviceDefinition, ...]
    default_device_id: str
    default_command_port: int
    # Listener/scheduler overrides; None means use the environment
    client_ip_filter: str | None = None
    status_listener_port: int | None = None
    transmit_queue_heartbeat: int | None = None

    def module_options(self, ip_address: str) -> ModuleOptions | None:
        for options in self.modules:
            if options.ip_address == ip_address:
                return options
        return None

    def device(self, device_id: str) -> DeviceDefinition | None:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None


# ============================================================================
# Runtime state
# ============================================================================

@dataclass(frozen=True)
class PutResult:
    """Outcome of a PUT request."""
    state: PutState
    status_code: int | None = None

    @classmethod
    def pending(cls) -> PutResult:
        return cls(PutState.PENDING)

    @classmethod
    def completed(cls, status_code: int) -> PutResult:
        return cls(PutState.COMPLETED, status_code)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"state": self.state.value}
        if self.status_code is not None:
            payload["statusCode"] = self.status_code
        return payload


CommandCallback = Callable[[PutResult], None]


@dataclass
class QueuedCommand:
    """Command waiting for (or awaiting acknowledgement of) transmission."""
    command: str
    callback: CommandCallback


@dataclass(frozen=True)
class Channel:
    """One relay or switch channel of a module."""
    index: str
    type: ChannelType
    address: int
    path: str
    description: str
    on_command: str | None = None
    off_command: str | None = None

    @property
    def order(self) -> int:
        digits = "".join(ch for ch in self.index if ch.isdigit())
        return int(digits) if digits else self.address

    @property
    def state_path(self) -> str:
        return f"{self.path}.state"

    @property
    def order_path(self) -> str:
        return f"{self.path}.order"

    def command_for(self, direction: Direction) -> str | None:
        return self.on_command if direction is Direction.ON else self.off_command


@dataclass
class CommandConnection:
    """Handle for a module's outbound command connection."""
    state: ConnectionState = ConnectionState.CONNECTING
    writer: asyncio.StreamWriter | None = None
    task: asyncio.Task[Any] | None = None

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN and self.writer is not None


@dataclass
class Module:
    """A physical DS module and its connection/queue state."""
    id: str
    ip_address: str
    device_id: str
    description: str
    command_port: int
    channels: dict[str, Channel] = field(default_factory=dict)
    command_connection: CommandConnection | None = None
    listener_connection: asyncio.StreamWriter | None = None
    command_queue: deque[QueuedCommand] = field(default_factory=deque)
    inflight: QueuedCommand | None = None

    @property
    def bank_path(self) -> str:
        return f"{SWITCHBANK_ROOT}.{self.id}"

    @property
    def relay_count(self) -> int:
        return sum(1 for c in self.channels.values() if c.type is ChannelType.RELAY)

    @property
    def switch_count(self) -> int:
        return sum(1 for c in self.channels.values() if c.type is ChannelType.SWITCH)

    def is_command_ready(self) -> bool:
        return self.command_connection is not None and self.command_connection.is_open


@dataclass(frozen=True)
class StatusReport:
    """Relay and switch bit strings parsed from one status push."""
    relays: str
    switches: str
