#!/usr/bin/env python3
"""
Parser for DS status pushes and projection onto channel paths.

A status push is newline separated text::

    <header / echo>
    <relay bits, one char per relay, '0' = off>
    <switch bits, optionally space separated>

Positions are 1-based channel addresses.
"""

import logging
import re
from typing import Any

from errors import MalformedStatus
from models import ChannelType, Module, StatusReport

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def _bits(lines: list[str], line_no: int, count: int, what: str) -> str:
    if count <= 0:
        return ""
    if len(lines) <= line_no:
        raise MalformedStatus(f"{what} line missing")
    bits = _WHITESPACE.sub("", lines[line_no])
    if len(bits) < count:
        raise MalformedStatus(
            f"{what} line has {len(bits)} state(s), expected {count}"
        )
    # DS firmware reports a fixed width wider than smaller boards
    return bits[:count]


def parse_status(text: str, relay_count: int, switch_count: int) -> StatusReport:
    """Parse one status push.

    Raises:
        MalformedStatus: a required line is absent or too short.
    """
    lines = text.split("\n")
    return StatusReport(
        relays=_bits(lines, 1, relay_count, "relay"),
        switches=_bits(lines, 2, switch_count, "switch"),
    )


def project_status(module: Module, report: StatusReport) -> list[tuple[str, Any]]:
    """Return (path, value) updates for every channel covered by ``report``."""
    updates: list[tuple[str, Any]] = []
    for channel in module.channels.values():
        bits = report.relays if channel.type is ChannelType.RELAY else report.switches
        if not 1 <= channel.address <= len(bits):
            continue
        state = 0 if bits[channel.address - 1] == "0" else 1
        updates.append((channel.order_path, channel.order))
        updates.append((channel.state_path, state))
    return updates


def decode_status(module: Module, payload: bytes) -> list[tuple[str, Any]]:
    """Decode, parse and project one raw status chunk for ``module``."""
    text = payload.decode("ascii", errors="replace")
    report = parse_status(text, module.relay_count, module.switch_count)
    return project_status(module, report)
