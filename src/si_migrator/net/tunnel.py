"""SSH tunnel used to reach a database that is not directly routable."""

import asyncio
import os
import socket
from dataclasses import dataclass
from typing import List, Optional

import asyncssh
from loguru import logger

from ..config.config import ConfigurationError

DEFAULT_SSH_PORT = 22
DEFAULT_REMOTE_PORT = 3306
CONNECT_TIMEOUT = 5
COPY_BUFFER_SIZE = 32 * 1024


class TunnelConfigurationError(ConfigurationError):
    """Tunnel is required but not fully configured."""

    pass


@dataclass
class Endpoint:
    """Host and port pair."""

    host: str
    port: int

    def __str__(self) -> str:
        return f'{self.host}:{self.port}'


def find_local_port(host: str = 'localhost') -> int:
    """Ask the OS for a free local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


class SSHTunnel:
    """Forwards local TCP connections to a remote host through an SSH hop."""

    def __init__(
        self,
        remote: Endpoint,
        server: Endpoint,
        username: str,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
        local: Optional[Endpoint] = None,
    ):
        """Initialize the tunnel.

        Args:
            remote: Database endpoint as seen from the SSH server
            server: SSH server endpoint
            username: SSH user
            password: SSH password
            private_key: Path to an SSH private key file
            local: Local listener endpoint, an ephemeral port by default
        """
        self.remote = remote
        self.server = server
        self.username = username
        self.password = password
        self.private_key = private_key
        self.local = local or Endpoint('localhost', find_local_port())
        self.logger = logger.bind(component='SSHTunnel')

        self._ready = asyncio.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._start_error: Optional[BaseException] = None

    def connect_options(self) -> dict:
        """Build asyncssh connect arguments.

        A private key wins over a password. Without either, the agent at
        ``SSH_AUTH_SOCK`` is used if present.
        """
        options = {
            'host': self.server.host,
            'port': self.server.port,
            'username': self.username,
            'known_hosts': None,
            'connect_timeout': CONNECT_TIMEOUT,
        }
        if self.private_key:
            options['client_keys'] = [self.private_key]
            options['agent_path'] = None
        elif self.password:
            options['password'] = self.password
            options['client_keys'] = ()
            options['agent_path'] = None
        elif os.getenv('SSH_AUTH_SOCK'):
            options['agent_path'] = os.environ['SSH_AUTH_SOCK']
        return options

    async def start(self) -> None:
        """Listen locally and forward connections until cancelled.

        A failure to listen is reported through :meth:`wait_ready`.
        """
        try:
            self._server = await asyncio.start_server(
                self._forward, self.local.host, self.local.port
            )
        except OSError as e:
            self._start_error = e
            self._ready.set()
            return

        self.logger.debug(f'Tunnel {self.local} -> {self.server} -> {self.remote} ready')
        self._ready.set()

        async with self._server:
            await self._server.serve_forever()

    async def wait_ready(self) -> None:
        """Block until the local listener accepts connections.

        Raises:
            OSError: If the listener could not be opened
        """
        await self._ready.wait()
        if self._start_error is not None:
            raise self._start_error

    def close(self) -> None:
        if self._server is not None:
            self._server.close()

    async def _forward(
        self, local_reader: asyncio.StreamReader, local_writer: asyncio.StreamWriter
    ) -> None:
        try:
            async with asyncssh.connect(**self.connect_options()) as conn:
                remote_reader, remote_writer = await conn.open_connection(
                    self.remote.host, self.remote.port
                )
                await asyncio.gather(
                    _copy(local_reader, remote_writer),
                    _copy(remote_reader, local_writer),
                )
        except (OSError, asyncssh.Error) as e:
            self.logger.error(f'Tunnel connection to {self.remote} failed: {e}')
        finally:
            local_writer.close()


async def _copy(reader, writer) -> None:
    try:
        while True:
            data = await reader.read(COPY_BUFFER_SIZE)
            if not data:
                break
            writer.write(data)
            await writer.drain()
    except (ConnectionError, asyncssh.Error) as e:
        logger.debug(f'Tunnel stream closed: {e}')
    finally:
        if not writer.is_closing() and writer.can_write_eof():
            writer.write_eof()


def new_tunnel(
    db_host: str,
    ssh_host: str,
    ssh_username: str,
    ssh_password: Optional[str] = None,
    ssh_private_key: Optional[str] = None,
    required: bool = False,
    remote_port: int = DEFAULT_REMOTE_PORT,
) -> Optional[SSHTunnel]:
    """Build a tunnel to a database host, or None when none is needed.

    Raises:
        TunnelConfigurationError: If a tunnel is required but incomplete
    """
    if not required:
        return None

    missing: List[str] = []
    if not ssh_host:
        missing.append('host')
    if not ssh_username:
        missing.append('username')
    if not ssh_password and not ssh_private_key:
        missing.append('password or private key')
    if missing:
        raise TunnelConfigurationError(
            'tunneling is required, but the tunnel information was not specified: '
            f'missing {", ".join(missing)}'
        )

    return SSHTunnel(
        remote=Endpoint(db_host, remote_port),
        server=Endpoint(ssh_host, DEFAULT_SSH_PORT),
        username=ssh_username,
        password=ssh_password or None,
        private_key=ssh_private_key or None,
    )
