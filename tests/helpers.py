"""Shared test helper functions."""

from typing import Any

from models import BridgeOptions, ModuleOptions, ChannelOption
from options import DEFAULT_DEVICES
from registry import ModuleRegistry


class RecordingSink:
    """Stands in for MQTTPublisher; keeps everything published."""

    def __init__(self, namespace: str = "devantech"):
        self.namespace = namespace
        self.published: list[tuple[str, dict[str, Any], bool]] = []

    def topic(self, suffix: str) -> str:
        return f"{self.namespace}/{suffix}"

    def publish_json(self, topic, payload, *, retain=False):
        self.published.append((topic, payload, retain))
        return True

    def deltas(self):
        return [p for t, p, _ in self.published if t == self.topic("delta")]

    def values(self):
        """Flatten every published delta value into (path, value) pairs."""
        out = []
        for doc in self.deltas():
            for update in doc["updates"]:
                out.extend((v["path"], v["value"]) for v in update.get("values", []))
        return out

    def meta_paths(self):
        out = []
        for doc in self.deltas():
            for update in doc["updates"]:
                out.extend(m["path"] for m in update.get("meta", []))
        return out


def make_options(
    modules: tuple[ModuleOptions, ...] = (),
    devices=DEFAULT_DEVICES,
    **kwargs,
) -> BridgeOptions:
    return BridgeOptions(
        modules=modules,
        devices=devices,
        default_device_id=kwargs.pop("default_device_id", "DS"),
        default_command_port=kwargs.pop("default_command_port", 17123),
        **kwargs,
    )


def make_registry(options: BridgeOptions | None = None, sink: RecordingSink | None = None):
    sink = sink or RecordingSink()
    return ModuleRegistry(options or make_options(), sink), sink


def module_options(ip_address: str, **kwargs) -> ModuleOptions:
    channels = tuple(ChannelOption(**c) for c in kwargs.pop("channels", ()))
    return ModuleOptions(ip_address=ip_address, channels=channels, **kwargs)
