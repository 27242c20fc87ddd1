"""StatusListener - TCP server for status pushes initiated by DS modules."""

# pylint: disable=broad-exception-caught,too-many-instance-attributes

from __future__ import annotations

import asyncio
import logging
import re
import socket
from contextlib import suppress
from typing import Any

from command_connection import CommandConnectionManager
from config import CLIENT_IP_FILTER, STATUS_LISTEN_HOST, STATUS_LISTENER_PORT, STATUS_READ_SIZE
from delta import Delta, DeltaSink
from errors import BridgeError, MalformedStatus, UnauthorizedOrigin
from models import Module
from registry import ModuleRegistry
from status_parser import decode_status

logger = logging.getLogger(__name__)


class StatusListener:
    """Accepts module connections and turns their status pushes into deltas."""

    def __init__(
        self,
        registry: ModuleRegistry,
        connections: CommandConnectionManager,
        sink: DeltaSink,
        *,
        host: str = STATUS_LISTEN_HOST,
        port: int = STATUS_LISTENER_PORT,
        client_ip_filter: str = CLIENT_IP_FILTER,
    ) -> None:
        self._registry = registry
        self._connections = connections
        self._sink = sink
        self.host = host
        self.port = port
        self._filter = re.compile(client_ip_filter)
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

        self.rejected = 0
        self.reports_ok = 0
        self.reports_bad = 0

    async def start(self) -> None:
        """Bind the listening socket."""
        self._server = await asyncio.start_server(
            self.handle_connection, self.host, self.port
        )
        addr = self._server.sockets[0].getsockname()
        logger.info("STATUS: listening for DS module connections on %s:%s", addr[0], addr[1])

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        async with self._server:
            await self._server.serve_forever()

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            with suppress(Exception):
                await self._server.wait_closed()
            self._server = None
        for writer in list(self._writers):
            await self._close_writer(writer)
        self._writers.clear()

    # ------------------------------------------------------------------

    @staticmethod
    def peer_ip(writer: Any) -> str | None:
        peer = writer.get_extra_info("peername")
        if not peer:
            return None
        host = str(peer[0])
        # IPv4-mapped IPv6 (::ffff:10.0.0.5) -> 10.0.0.5
        return host[host.rfind(":") + 1:]

    def check_origin(self, ip_address: str) -> None:
        if not self._filter.search(ip_address):
            raise UnauthorizedOrigin(ip_address)

    async def handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one module connection for its whole lifetime."""
        ip_address = self.peer_ip(writer)
        if not ip_address:
            await self._close_writer(writer)
            return

        try:
            self.check_origin(ip_address)
        except UnauthorizedOrigin:
            self.rejected += 1
            logger.warning("STATUS: rejecting connection attempt from %s", ip_address)
            await self._close_writer(writer)
            return

        try:
            module = self._registry.get_or_create(ip_address)
        except (BridgeError, ValueError) as e:
            logger.error("STATUS: cannot create module for %s: %s", ip_address, e)
            await self._close_writer(writer)
            return

        await self._bind(module, writer)
        self._writers.add(writer)
        try:
            while True:
                try:
                    data = await reader.read(STATUS_READ_SIZE)
                except OSError as e:
                    logger.debug("STATUS: connection from %s reset: %s", ip_address, e)
                    break
                if not data:
                    break
                self.on_data(module, data)
        finally:
            self._writers.discard(writer)
            await self._close_writer(writer)
            if module.listener_connection is writer:
                module.listener_connection = None
            logger.debug("STATUS: closing connection for %s", ip_address)

    async def _bind(self, module: Module, writer: asyncio.StreamWriter) -> None:
        previous = module.listener_connection
        if previous is not None and previous is not writer:
            logger.debug("STATUS: replacing listener connection for %s", module.ip_address)
            await self._close_writer(previous)
        module.listener_connection = writer
        self._tune_socket(writer)
        self._ensure_command_connection(module)

    def _ensure_command_connection(self, module: Module) -> None:
        if module.command_connection is None and module.command_port:
            self._connections.open(module)

    def on_data(self, module: Module, data: bytes) -> None:
        """Parse one status push; bad reports are dropped."""
        # Any contact reopens a dropped command path
        self._ensure_command_connection(module)
        try:
            updates = decode_status(module, data)
        except MalformedStatus as e:
            self.reports_bad += 1
            logger.warning("STATUS: malformed report from %s (%s)", module.ip_address, e)
            return
        except Exception as e:
            self.reports_bad += 1
            logger.error("STATUS: error processing data from %s (%s)", module.ip_address, e)
            return
        self.reports_ok += 1
        Delta(self._sink).add_values(updates).commit().clear()

    @staticmethod
    def _tune_socket(writer: Any) -> None:
        sock = writer.get_extra_info("socket")
        if sock is None:
            return
        with suppress(Exception):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

    @staticmethod
    async def _close_writer(writer: Any) -> None:
        if writer is None:
            return
        with suppress(Exception):
            writer.close()
            await writer.wait_closed()
