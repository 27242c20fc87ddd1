"""CommandScheduler - per-module command queues drained on a heartbeat."""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import asyncio
import logging
from typing import Any

from config import TRANSMIT_QUEUE_HEARTBEAT
from models import CommandCallback, Module, PutResult, QueuedCommand
from registry import ModuleRegistry

logger = logging.getLogger(__name__)


class CommandScheduler:
    """Sends at most one command per module per tick, one in flight at a time.

    The DS acknowledgement line carries no correlation id, so a module only
    gets its next command once the previous one has been acknowledged.
    """

    def __init__(
        self,
        registry: ModuleRegistry,
        heartbeat_ms: int = TRANSMIT_QUEUE_HEARTBEAT,
    ) -> None:
        self._registry = registry
        self.heartbeat_s: float = max(1, int(heartbeat_ms)) / 1000.0
        self._task: asyncio.Task[Any] | None = None
        self.sent_count = 0

    @staticmethod
    def enqueue(module: Module, command: str, callback: CommandCallback) -> None:
        """Append a command to the module's queue; never blocks."""
        module.command_queue.append(QueuedCommand(command=command, callback=callback))
        logger.debug(
            "SCHED: queued '%s' for %s (queue=%d)",
            command, module.ip_address, len(module.command_queue),
        )

    def tick(self) -> int:
        """Run one pass over all modules; return how many commands were sent."""
        sent = 0
        for module in self._registry.modules():
            try:
                if self._send_next(module):
                    sent += 1
            except Exception as e:
                logger.error(
                    "SCHED: cannot send command to module '%s': %s",
                    module.ip_address, e,
                )
        self.sent_count += sent
        return sent

    @staticmethod
    def _send_next(module: Module) -> bool:
        if module.inflight is not None or not module.command_queue:
            return False
        if not module.is_command_ready():
            # Stays queued until the connection opens (or closes and clears it)
            return False
        writer = module.command_connection.writer
        queued = module.command_queue[0]
        try:
            line = f"{queued.command}\n".encode("ascii")
        except UnicodeEncodeError:
            # Unsendable, never retried
            module.command_queue.popleft()
            logger.error(
                "SCHED: dropping non-ASCII command %r for module '%s'",
                queued.command, module.ip_address,
            )
            queued.callback(PutResult.completed(400))
            return False
        writer.write(line)
        module.command_queue.popleft()
        module.inflight = queued
        logger.info("SCHED: sending '%s' to module '%s'", queued.command, module.ip_address)
        return True

    async def run(self) -> None:
        """Tick forever at the heartbeat interval."""
        logger.info("SCHED: transmit queue heartbeat %.0f ms", self.heartbeat_s * 1000)
        while True:
            self.tick()
            await asyncio.sleep(self.heartbeat_s)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
