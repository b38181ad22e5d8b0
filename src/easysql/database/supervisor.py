"""Liveness and reconnect supervision.

The supervisor resolves connection ids to live adapters, rebuilding a dead
connection at most once per call. There is no background polling; health is
checked only when a connection is used.

Example:
    >>> supervisor = ConnectionSupervisor(registry, AdapterFactory(), SSHTunnelManager())
    >>> await supervisor.connect(profile)
    >>> tables = await supervisor.run("c1", lambda a: a.list_tables("app"))
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from ..config.models import ConnectionProfile
from ..core.exceptions import ConnectionLost, EasySQLException, ErrorCodes
from ..logging import get_logger, get_performance_logger
from ..tunnel.ssh import SSHTunnelManager, Tunnel
from .base import BaseAdapter
from .connections import ConnectionEntry, ConnectionRegistry, close_quietly
from .factory import AdapterFactory

R = TypeVar("R")

TRANSPORT_EXCEPTIONS = (
    ConnectionResetError,
    BrokenPipeError,
    ConnectionAbortedError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
)


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTED = "connected"
    SUSPECT = "suspect"


def is_transport_error(exc: BaseException) -> bool:
    """Return True for failures a reconnect can fix."""
    if isinstance(exc, EasySQLException):
        return exc.code == ErrorCodes.CONNECTION_LOST
    return isinstance(exc, TRANSPORT_EXCEPTIONS)


class ConnectionSupervisor:
    """Builds, resolves and heals registry entries."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        factory: AdapterFactory,
        tunnels: SSHTunnelManager,
    ) -> None:
        self.registry = registry
        self.factory = factory
        self.tunnels = tunnels
        self.logger = get_logger("easysql.supervisor")
        self.perf_logger = get_performance_logger("easysql.supervisor")
        self._states: Dict[str, ConnectionState] = {}

    async def open_connection(self, profile: ConnectionProfile) -> Tuple[BaseAdapter, Optional[Tunnel]]:
        """Build and connect an adapter, through a tunnel when configured.

        Returns the connected adapter and the tunnel (or None). On failure
        the tunnel is closed before the error propagates.
        """
        tunnel: Optional[Tunnel] = None
        target = profile
        if profile.uses_tunnel:
            tunnel = await self.tunnels.open(profile.ssh, profile.resolved_host, profile.resolved_port)
            self.registry.track_tunnel(tunnel)
            target = profile.with_address(tunnel.local_host, tunnel.local_port)

        try:
            adapter = self.factory.create(target)
            with self.perf_logger.measure("connect", engine=profile.engine):
                await adapter.connect()
        except BaseException:
            if tunnel is not None:
                self.registry.untrack_tunnel(tunnel)
                await self.tunnels.close(tunnel)
            raise

        return adapter, tunnel

    async def connect(self, profile: ConnectionProfile) -> ConnectionEntry:
        """Open a connection and register it under ``profile.id``."""
        adapter, tunnel = await self.open_connection(profile)
        entry = await self.registry.register(profile.id, adapter, profile, tunnel)
        self._states[profile.id] = ConnectionState.CONNECTED
        return entry

    async def disconnect(self, connection_id: str) -> None:
        """Remove a connection. Unknown ids are a no-op."""
        await self.registry.remove(connection_id)
        self._states.pop(connection_id, None)

    def state(self, connection_id: str) -> ConnectionState:
        if self.registry.get(connection_id) is None:
            return ConnectionState.UNCONNECTED
        return self._states.get(connection_id, ConnectionState.CONNECTED)

    async def resolve(self, connection_id: str) -> BaseAdapter:
        """Return a live adapter for ``connection_id``.

        Raises:
            ConnectionLost: If the id is unknown, or the connection is dead
                and the single rebuild failed.
        """
        adapter, _ = await self._resolve(connection_id)
        return adapter

    async def _resolve(self, connection_id: str) -> Tuple[BaseAdapter, bool]:
        entry = self.registry.get(connection_id)
        if entry is None:
            raise ConnectionLost(
                f"Connection {connection_id} is not open",
                code=ErrorCodes.NOT_CONNECTED,
                context={"connection_id": connection_id},
            )

        if await entry.adapter.is_alive():
            self._states[connection_id] = ConnectionState.CONNECTED
            return entry.adapter, False

        self.logger.warning("Connection not alive; rebuilding", connection_id=connection_id)
        return await self._rebuild(entry), True

    async def _rebuild(self, entry: ConnectionEntry) -> BaseAdapter:
        connection_id = entry.id
        self._states[connection_id] = ConnectionState.SUSPECT

        await close_quietly(entry.adapter, entry.tunnel)

        try:
            adapter, tunnel = await self.open_connection(entry.profile)
        except Exception as e:
            self.logger.error("Reconnect failed", connection_id=connection_id, error=str(e))
            await self.registry.remove(connection_id)
            self._states.pop(connection_id, None)
            raise ConnectionLost(
                f"Connection {connection_id} lost and reconnect failed: "
                f"{e.message if isinstance(e, EasySQLException) else e}",
                code=ErrorCodes.CONNECTION_LOST,
                context={"connection_id": connection_id, "engine": entry.engine},
                cause=e,
            ) from e

        if not self.registry.replace_handle(connection_id, adapter, tunnel):
            await close_quietly(adapter, tunnel)
            raise ConnectionLost(
                f"Connection {connection_id} was closed during reconnect",
                code=ErrorCodes.NOT_CONNECTED,
                context={"connection_id": connection_id},
            )

        self._states[connection_id] = ConnectionState.CONNECTED
        self.logger.info("Connection rebuilt", connection_id=connection_id, engine=entry.engine)
        return adapter

    async def run(self, connection_id: str, operation: Callable[[BaseAdapter], Awaitable[R]]) -> R:
        """Resolve ``connection_id`` and run ``operation`` against its adapter.

        A transport failure triggers one rebuild and one retry, unless the
        resolve step already rebuilt. Statement errors propagate unchanged.
        """
        adapter, rebuilt = await self._resolve(connection_id)
        try:
            return await operation(adapter)
        except Exception as e:
            if rebuilt or not is_transport_error(e):
                raise
            self.logger.warning(
                "Transport error; reconnecting once",
                connection_id=connection_id,
                error=str(e),
            )

        entry = self.registry.get(connection_id)
        if entry is None:
            raise ConnectionLost(
                f"Connection {connection_id} is not open",
                code=ErrorCodes.NOT_CONNECTED,
                context={"connection_id": connection_id},
            )
        adapter = await self._rebuild(entry)
        return await operation(adapter)

    async def shutdown(self) -> None:
        """Close every connection and every tunnel."""
        await self.registry.remove_all()
        await self.tunnels.close_all()
        self._states.clear()
        self.logger.info("Supervisor shut down")
