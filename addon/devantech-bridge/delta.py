"""Batched Signal K style deltas published on the host bus."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from config import BRIDGE_ID, DELTA_CONTEXT

logger = logging.getLogger(__name__)


class DeltaSink(Protocol):
    """Anything that can carry a delta document (MQTTPublisher in production)."""

    def publish_json(
        self, topic: str, payload: dict[str, Any], *, retain: bool = False
    ) -> bool: ...

    def topic(self, suffix: str) -> str: ...


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Delta:
    """Collects values and metadata, then commits them as one message."""

    def __init__(self, sink: DeltaSink, source: str = BRIDGE_ID):
        self._sink = sink
        self._source = source
        self.values: list[tuple[str, Any]] = []
        self.meta: list[tuple[str, dict[str, Any]]] = []

    def add_value(self, path: str, value: Any) -> Delta:
        self.values.append((path, value))
        return self

    def add_values(self, updates: list[tuple[str, Any]]) -> Delta:
        self.values.extend(updates)
        return self

    def add_meta(self, path: str, meta: dict[str, Any]) -> Delta:
        self.meta.append((path, meta))
        return self

    def __len__(self) -> int:
        return len(self.values) + len(self.meta)

    def document(self) -> dict[str, Any]:
        update: dict[str, Any] = {
            "$source": f"plugin:{self._source}",
            "timestamp": _timestamp(),
        }
        if self.values:
            update["values"] = [{"path": p, "value": v} for p, v in self.values]
        if self.meta:
            update["meta"] = [{"path": p, "value": m} for p, m in self.meta]
        return {"context": DELTA_CONTEXT, "updates": [update]}

    def commit(self) -> Delta:
        """Publish everything added since the last clear; empty deltas are skipped."""
        if not len(self):
            return self
        self._sink.publish_json(self._sink.topic("delta"), self.document())
        logger.debug(
            "Delta: committed %d value(s), %d meta", len(self.values), len(self.meta)
        )
        return self

    def clear(self) -> Delta:
        self.values = []
        self.meta = []
        return self
