"""Connection registry.

Classes:
    ConnectionEntry: One live connection (adapter, profile, optional tunnel)
    ConnectionRegistry: Protocol the supervisor and service depend on
    InMemoryConnectionRegistry: Lock-guarded dictionary implementation

Example:
    >>> registry = InMemoryConnectionRegistry()
    >>> await registry.register("c1", adapter, profile)
    >>> entry = registry.get("c1")
    >>> await registry.remove("c1")
"""

import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Protocol, runtime_checkable

from ..config.models import ConnectionProfile
from ..logging import get_logger
from .base import BaseAdapter

if TYPE_CHECKING:
    from ..tunnel.ssh import Tunnel

logger = get_logger("easysql.database.connections")


@dataclass
class ConnectionEntry:
    """A registered connection.

    The entry exclusively owns its adapter and tunnel. ``id`` and ``profile``
    never change; ``adapter`` and ``tunnel`` are swapped by reconnection.
    """

    id: str
    engine: str
    adapter: BaseAdapter
    profile: ConnectionProfile
    tunnel: Optional["Tunnel"] = None
    connected_at: float = field(default_factory=time.time)


@runtime_checkable
class ConnectionRegistry(Protocol):
    async def register(
        self,
        connection_id: str,
        adapter: BaseAdapter,
        profile: ConnectionProfile,
        tunnel: Optional["Tunnel"] = None,
    ) -> ConnectionEntry:
        ...

    def get(self, connection_id: str) -> Optional[ConnectionEntry]:
        ...

    def replace_handle(
        self, connection_id: str, adapter: BaseAdapter, tunnel: Optional["Tunnel"] = None
    ) -> bool:
        ...

    async def remove(self, connection_id: str) -> None:
        ...

    async def remove_all(self) -> None:
        ...

    def track_tunnel(self, tunnel: "Tunnel") -> None:
        ...

    def untrack_tunnel(self, tunnel: "Tunnel") -> None:
        ...

    def ids(self) -> List[str]:
        ...


async def close_quietly(adapter: Optional[BaseAdapter], tunnel: Optional["Tunnel"]) -> None:
    """Close an adapter, then its tunnel; failures are logged and swallowed."""
    if adapter is not None:
        try:
            await adapter.disconnect()
        except Exception as e:
            logger.warning("Failed to close adapter", connection_id=adapter.connection_id, error=str(e))
    if tunnel is not None:
        try:
            await tunnel.close()
        except Exception as e:
            logger.warning("Failed to close tunnel", local_port=tunnel.local_port, error=str(e))


class InMemoryConnectionRegistry:
    """Dictionary-backed connection registry.

    A ``threading.Lock`` guards the mapping; adapters and tunnels are always
    closed after the lock is released.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ConnectionEntry] = {}
        self._orphans: List["Tunnel"] = []
        self._lock = threading.Lock()

    async def register(
        self,
        connection_id: str,
        adapter: BaseAdapter,
        profile: ConnectionProfile,
        tunnel: Optional["Tunnel"] = None,
    ) -> ConnectionEntry:
        """Insert or replace an entry; a replaced entry is closed first."""
        entry = ConnectionEntry(
            id=connection_id,
            engine=profile.engine,
            adapter=adapter,
            profile=profile,
            tunnel=tunnel,
        )
        with self._lock:
            previous = self._entries.get(connection_id)

        if previous is not None:
            logger.info("Replacing existing connection", connection_id=connection_id)
            await close_quietly(previous.adapter, previous.tunnel)

        with self._lock:
            self._entries[connection_id] = entry
            if tunnel is not None:
                self._discard_orphan(tunnel)

        logger.info(
            "Connection registered",
            connection_id=connection_id,
            engine=profile.engine,
            tunneled=tunnel is not None,
        )
        return entry

    def get(self, connection_id: str) -> Optional[ConnectionEntry]:
        with self._lock:
            return self._entries.get(connection_id)

    def replace_handle(
        self, connection_id: str, adapter: BaseAdapter, tunnel: Optional["Tunnel"] = None
    ) -> bool:
        """Swap the adapter and tunnel of an entry in place.

        Returns False when the entry has been removed meanwhile; the caller
        then owns ``adapter`` and ``tunnel``.
        """
        with self._lock:
            entry = self._entries.get(connection_id)
            if entry is None:
                return False
            entry.adapter = adapter
            entry.tunnel = tunnel
            entry.connected_at = time.time()
            if tunnel is not None:
                self._discard_orphan(tunnel)
        return True

    async def remove(self, connection_id: str) -> None:
        with self._lock:
            entry = self._entries.pop(connection_id, None)
        if entry is None:
            return
        await close_quietly(entry.adapter, entry.tunnel)
        logger.info("Connection removed", connection_id=connection_id)

    async def remove_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            orphans = list(self._orphans)
            self._entries.clear()
            self._orphans.clear()

        for entry in entries:
            await close_quietly(entry.adapter, entry.tunnel)
        for tunnel in orphans:
            await close_quietly(None, tunnel)

        if entries or orphans:
            logger.info("All connections removed", connections=len(entries), orphan_tunnels=len(orphans))

    def track_tunnel(self, tunnel: "Tunnel") -> None:
        with self._lock:
            if not any(t is tunnel for t in self._orphans):
                self._orphans.append(tunnel)

    def untrack_tunnel(self, tunnel: "Tunnel") -> None:
        with self._lock:
            self._discard_orphan(tunnel)

    def _discard_orphan(self, tunnel: "Tunnel") -> None:
        self._orphans = [t for t in self._orphans if t is not tunnel]

    @property
    def orphan_count(self) -> int:
        with self._lock:
            return len(self._orphans)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        with self._lock:
            return connection_id in self._entries

    def __repr__(self) -> str:
        return f"InMemoryConnectionRegistry(connections={len(self)})"
