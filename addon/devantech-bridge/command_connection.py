"""CommandConnectionManager - outbound command connection per module."""

# pylint: disable=broad-exception-caught

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable

from config import COMMAND_ACK_TOKEN, COMMAND_CONNECT_TIMEOUT
from models import CommandConnection, ConnectionState, Module, PutResult

logger = logging.getLogger(__name__)

OpenConnection = Callable[
    [str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]
]


class CommandConnectionManager:
    """Opens, reads and tears down module command connections.

    Queued commands survive a reconnect; an unacknowledged in-flight command
    does not. When the connection closes everything pending is dropped and
    the next status contact from the module opens a fresh connection.
    """

    def __init__(
        self,
        connect_timeout: float = COMMAND_CONNECT_TIMEOUT,
        open_connection: OpenConnection | None = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self._open_connection = open_connection or asyncio.open_connection
        self.orphan_acks = 0

    def open(self, module: Module) -> CommandConnection:
        """Start connecting to the module's command port."""
        previous = module.command_connection
        if previous is not None and previous.task is not None:
            previous.task.cancel()

        handle = CommandConnection()
        module.command_connection = handle
        module.inflight = None
        logger.debug(
            "CMD: opening command connection to %s:%s",
            module.ip_address, module.command_port,
        )
        handle.task = asyncio.create_task(self._run(module, handle))
        return handle

    async def close(self, module: Module) -> None:
        """Close the module's command connection, discarding pending commands."""
        handle = module.command_connection
        if handle is None:
            return
        self._on_closed(module, handle)
        task = handle.task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def close_all(self, modules: list[Module]) -> None:
        for module in modules:
            await self.close(module)

    # ------------------------------------------------------------------

    async def _run(self, module: Module, handle: CommandConnection) -> None:
        try:
            reader, writer = await asyncio.wait_for(
                self._open_connection(module.ip_address, module.command_port),
                timeout=self.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            logger.warning(
                "CMD: cannot connect to %s:%s (%s)",
                module.ip_address, module.command_port, str(e) or type(e).__name__,
            )
            self._on_closed(module, handle)
            return

        if module.command_connection is not handle:
            await self._close_writer(writer)
            return

        handle.writer = writer
        handle.state = ConnectionState.OPEN
        logger.info(
            "CMD: command connection to %s:%s is open",
            module.ip_address, module.command_port,
        )
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                self.on_data(module, line)
        except (OSError, ValueError, asyncio.IncompleteReadError) as e:
            logger.warning("CMD: read error from %s: %s", module.ip_address, e)
        finally:
            await self._close_writer(writer)
            self._on_closed(module, handle)

    def on_data(self, module: Module, data: bytes) -> None:
        """Handle one line received on the command connection."""
        text = data.decode("ascii", errors="replace").strip()
        if text != COMMAND_ACK_TOKEN:
            if text:
                logger.debug("CMD: ignoring '%s' from %s", text, module.ip_address)
            return
        queued = module.inflight
        if queued is None:
            self.orphan_acks += 1
            logger.debug("CMD: orphan command response received from module %s", module.ip_address)
            return
        module.inflight = None
        try:
            queued.callback(PutResult.completed(200))
        except Exception as e:
            logger.error("CMD: completion callback for '%s' failed: %s", queued.command, e)

    @staticmethod
    def _on_closed(module: Module, handle: CommandConnection) -> None:
        handle.state = ConnectionState.CLOSED
        handle.writer = None
        if module.command_connection is not handle:
            return
        dropped = len(module.command_queue) + (1 if module.inflight else 0)
        module.command_connection = None
        module.command_queue.clear()
        module.inflight = None
        logger.info(
            "CMD: command connection to %s:%s has closed (%d pending command(s) dropped)",
            module.ip_address, module.command_port, dropped,
        )

    @staticmethod
    async def _close_writer(writer: Any) -> None:
        if writer is None:
            return
        with suppress(Exception):
            writer.close()
            await writer.wait_closed()
