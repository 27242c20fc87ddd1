"""ON/OFF command lookup for device definitions."""

from __future__ import annotations

from errors import UnresolvedCommand
from models import ChannelTemplate, DeviceDefinition, Direction

CHANNEL_PLACEHOLDER = "{c}"


def select_template(
    device: DeviceDefinition, channel_address: int
) -> ChannelTemplate | None:
    """Return the template governing ``channel_address``.

    A device with a single address-0 template is parametric: that template
    covers every channel.
    """
    if len(device.channels) == 1 and device.channels[0].address == 0:
        return device.channels[0]
    for template in device.channels:
        if template.address == channel_address:
            return template
    return None


def resolve_command(
    device: DeviceDefinition, channel_address: int, direction: Direction
) -> str:
    """Return the command string for a channel with placeholders substituted."""
    template = select_template(device, channel_address)
    if template is None:
        raise UnresolvedCommand(device.id, channel_address, direction.value)
    raw = template.oncommand if direction is Direction.ON else template.offcommand
    if not raw:
        raise UnresolvedCommand(device.id, channel_address, direction.value)
    return raw.replace(CHANNEL_PLACEHOLDER, str(channel_address))
