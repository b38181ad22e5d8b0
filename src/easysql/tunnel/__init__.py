"""SSH tunnel management."""

from .ssh import PortAllocator, SSHTunnelManager, Tunnel, load_private_key

__all__ = [
    "PortAllocator",
    "SSHTunnelManager",
    "Tunnel",
    "load_private_key",
]
