"""SSH tunnels built on paramiko.

Each tunnel owns one authenticated SSH client and one local asyncio listener.
Every local connection accepted by the listener gets its own ``direct-tcpip``
channel to the remote database address; bytes are relayed unmodified in
both directions until either side closes.

Classes:
    PortAllocator: Thread-safe cycling allocator over a local port range
    Tunnel: A live tunnel (SSH client, local listener, active relays)
    SSHTunnelManager: Opens, tracks and closes tunnels

Example:
    >>> manager = SSHTunnelManager(TunnelSettings())
    >>> tunnel = await manager.open(profile.ssh, "10.0.0.5", 3306)
    >>> tunnel.local_host, tunnel.local_port
    ('127.0.0.1', 40000)
    >>> await manager.close(tunnel)
"""

import asyncio
import io
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

import paramiko

from ..config.models import SSHConfig, TunnelSettings
from ..core.exceptions import ErrorCodes, TunnelError
from ..logging import get_logger, get_performance_logger

logger = get_logger("easysql.tunnel")

KEY_CLASSES: Tuple[type, ...] = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


class PortAllocator:
    """Cycles through ``[start, end]``, wrapping past ``end`` back to ``start``.

    The allocator only proposes candidates; the OS rejects ports that are
    already bound, and the caller moves on to the next candidate.
    """

    def __init__(self, start: int, end: int) -> None:
        if end < start:
            raise ValueError(f"Invalid port range {start}-{end}")
        self.start = start
        self.end = end
        self._next = start
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return self.end - self.start + 1

    def next_port(self) -> int:
        with self._lock:
            port = self._next
            self._next = self.start if port >= self.end else port + 1
            return port


@dataclass(eq=False)
class Tunnel:
    """A live SSH tunnel.

    Engine connections target ``(local_host, local_port)``. ``close`` stops
    the listener before anything else so no new relay can start while the
    SSH session is torn down.
    """

    ssh_host: str
    remote_host: str
    remote_port: int
    local_host: str
    local_port: int
    client: paramiko.SSHClient
    server: Optional[asyncio.AbstractServer] = None
    buffer_size: int = 16384
    closed: bool = False
    _relays: Set["asyncio.Task[None]"] = field(default_factory=set, repr=False)

    @property
    def active_relays(self) -> int:
        return len(self._relays)

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._relays.add(task)
        try:
            await self._relay(reader, writer)
        finally:
            if task is not None:
                self._relays.discard(task)

    async def _relay(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername") or ("127.0.0.1", 0)
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            logger.warning("SSH transport inactive; dropping local connection", local_port=self.local_port)
            writer.close()
            return

        try:
            channel = await asyncio.to_thread(
                transport.open_channel,
                "direct-tcpip",
                (self.remote_host, self.remote_port),
                tuple(peer[:2]),
            )
        except (paramiko.SSHException, OSError) as e:
            logger.warning(
                "Remote forward refused",
                remote_host=self.remote_host,
                remote_port=self.remote_port,
                error=str(e),
            )
            writer.close()
            return

        async def local_to_remote() -> None:
            while True:
                data = await reader.read(self.buffer_size)
                if not data:
                    break
                await asyncio.to_thread(channel.sendall, data)

        async def remote_to_local() -> None:
            while True:
                data = await asyncio.to_thread(channel.recv, self.buffer_size)
                if not data:
                    break
                writer.write(data)
                await writer.drain()

        pumps = [asyncio.ensure_future(local_to_remote()), asyncio.ensure_future(remote_to_local())]
        try:
            await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pump in pumps:
                pump.cancel()
            channel.close()
            writer.close()
            # Closing the channel unblocks a pending recv in the worker thread.
            await asyncio.gather(*pumps, return_exceptions=True)

    async def close(self) -> None:
        """Stop the listener, cancel relays, close the SSH client. Idempotent."""
        if self.closed:
            return
        self.closed = True

        if self.server is not None:
            self.server.close()

        relays = list(self._relays)
        for relay in relays:
            relay.cancel()
        if relays:
            await asyncio.gather(*relays, return_exceptions=True)

        if self.server is not None:
            await self.server.wait_closed()

        await asyncio.to_thread(self.client.close)
        logger.info("SSH tunnel closed", ssh_host=self.ssh_host, local_port=self.local_port)


def load_private_key(ssh: SSHConfig) -> paramiko.PKey:
    """Load the profile's private key from inline PEM text or a file path.

    RSA, ECDSA and Ed25519 keys are tried in that order.

    Raises:
        TunnelError: If no key type can parse the key
    """
    key_text = ssh.private_key.get_secret_value() if ssh.private_key else ""
    passphrase = ssh.passphrase.get_secret_value() if ssh.passphrase else None
    errors: List[str] = []

    for key_class in KEY_CLASSES:
        try:
            if ssh.is_inline_key:
                return key_class.from_private_key(io.StringIO(key_text), password=passphrase)
            return key_class.from_private_key_file(key_text, password=passphrase)
        except paramiko.PasswordRequiredException as e:
            raise TunnelError(
                "Private key is encrypted and no passphrase was given",
                code=ErrorCodes.SSH_AUTH_FAILED,
                context={"ssh_host": ssh.host},
                cause=e,
            ) from e
        except FileNotFoundError as e:
            raise TunnelError(
                f"Private key file not found: {key_text}",
                code=ErrorCodes.SSH_AUTH_FAILED,
                context={"ssh_host": ssh.host},
                cause=e,
            ) from e
        except (paramiko.SSHException, ValueError, IOError) as e:
            errors.append(f"{key_class.__name__}: {e}")

    raise TunnelError(
        "Unsupported or invalid private key",
        code=ErrorCodes.SSH_AUTH_FAILED,
        context={"ssh_host": ssh.host, "attempts": errors},
    )


class SSHTunnelManager:
    """Opens and tracks SSH tunnels.

    Every successful ``open`` must be paired with exactly one ``close``.
    """

    def __init__(self, settings: Optional[TunnelSettings] = None, *, verify_forward: bool = True) -> None:
        self.settings = settings or TunnelSettings()
        self.verify_forward = verify_forward
        self.allocator = PortAllocator(self.settings.port_range_start, self.settings.port_range_end)
        self.perf_logger = get_performance_logger("easysql.tunnel")
        self._tunnels: Set[Tunnel] = set()
        self._lock = threading.Lock()

    @property
    def open_tunnels(self) -> List[Tunnel]:
        with self._lock:
            return [t for t in self._tunnels if not t.closed]

    async def open(self, ssh: SSHConfig, remote_host: str, remote_port: int) -> Tunnel:
        """Authenticate against ``ssh`` and start a local listener.

        Raises:
            TunnelError: On SSH connect or auth failure, refused forward, or
                when no port in the configured range can be bound. The SSH
                session is closed before the error propagates.
        """
        with self.perf_logger.measure("open_tunnel", ssh_host=ssh.host, remote_port=remote_port):
            client = await asyncio.to_thread(self._connect_client, ssh)
            try:
                if self.verify_forward:
                    await asyncio.to_thread(self._probe_forward, client, remote_host, remote_port)
                tunnel = Tunnel(
                    ssh_host=ssh.host,
                    remote_host=remote_host,
                    remote_port=remote_port,
                    local_host=self.settings.bind_host,
                    local_port=0,
                    client=client,
                    buffer_size=self.settings.buffer_size,
                )
                tunnel.server, tunnel.local_port = await self._bind(tunnel)
            except BaseException:
                await asyncio.to_thread(client.close)
                raise

        with self._lock:
            self._tunnels = {t for t in self._tunnels if not t.closed}
            self._tunnels.add(tunnel)

        logger.info(
            "SSH tunnel opened",
            ssh_host=ssh.host,
            remote_host=remote_host,
            remote_port=remote_port,
            local_port=tunnel.local_port,
        )
        return tunnel

    def _connect_client(self, ssh: SSHConfig) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        timeout = self.settings.connect_timeout
        kwargs = {
            "hostname": ssh.host,
            "port": ssh.port,
            "username": ssh.username,
            "timeout": timeout,
            "banner_timeout": timeout,
            "auth_timeout": timeout,
            "allow_agent": False,
            "look_for_keys": False,
        }

        try:
            if ssh.has_private_key:
                kwargs["pkey"] = load_private_key(ssh)
            else:
                kwargs["password"] = ssh.password.get_secret_value() if ssh.password else ""
            client.connect(**kwargs)
        except TunnelError:
            client.close()
            raise
        except paramiko.AuthenticationException as e:
            client.close()
            raise TunnelError(
                f"SSH authentication failed for {ssh.username}@{ssh.host}",
                code=ErrorCodes.SSH_AUTH_FAILED,
                context={"ssh_host": ssh.host, "ssh_port": ssh.port},
                cause=e,
            ) from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TunnelError(
                f"Cannot connect to SSH server {ssh.host}:{ssh.port}: {e}",
                code=ErrorCodes.SSH_CONNECT_FAILED,
                context={"ssh_host": ssh.host, "ssh_port": ssh.port},
                cause=e,
            ) from e
        return client

    def _probe_forward(self, client: paramiko.SSHClient, remote_host: str, remote_port: int) -> None:
        transport = client.get_transport()
        if transport is None or not transport.is_active():
            raise TunnelError(
                "SSH transport closed before forwarding",
                code=ErrorCodes.SSH_CONNECT_FAILED,
                context={"remote_host": remote_host, "remote_port": remote_port},
            )
        try:
            channel = transport.open_channel(
                "direct-tcpip",
                (remote_host, remote_port),
                ("127.0.0.1", 0),
                timeout=self.settings.connect_timeout,
            )
        except (paramiko.SSHException, OSError) as e:
            raise TunnelError(
                f"SSH server refused forwarding to {remote_host}:{remote_port}: {e}",
                code=ErrorCodes.SSH_FORWARD_REFUSED,
                context={"remote_host": remote_host, "remote_port": remote_port},
                cause=e,
            ) from e
        channel.close()

    async def _bind(self, tunnel: Tunnel) -> Tuple[asyncio.AbstractServer, int]:
        last_error: Optional[OSError] = None
        for _ in range(self.allocator.size):
            port = self.allocator.next_port()
            try:
                server = await asyncio.start_server(tunnel.handle_client, host=self.settings.bind_host, port=port)
            except OSError as e:
                last_error = e
                continue
            return server, port

        raise TunnelError(
            f"No free local port in {self.allocator.start}-{self.allocator.end}",
            code=ErrorCodes.PORT_RANGE_EXHAUSTED,
            context={"start": self.allocator.start, "end": self.allocator.end},
            cause=last_error,
        )

    async def close(self, tunnel: Tunnel) -> None:
        with self._lock:
            self._tunnels.discard(tunnel)
        await tunnel.close()

    async def close_all(self) -> None:
        with self._lock:
            tunnels = list(self._tunnels)
            self._tunnels.clear()
        for tunnel in tunnels:
            try:
                await tunnel.close()
            except Exception as e:
                logger.warning("Failed to close tunnel", local_port=tunnel.local_port, error=str(e))

    def __repr__(self) -> str:
        return f"SSHTunnelManager(open_tunnels={len(self.open_tunnels)})"
