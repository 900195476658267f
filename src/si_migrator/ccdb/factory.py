"""Opens Cloud Controller database connections, tunnelled when needed."""

import asyncio
from typing import Callable, Dict, List, Optional, Tuple

import pymysql
from loguru import logger

from ..config.config import DatabaseConfig
from ..net.tunnel import SSHTunnel, new_tunnel
from .exceptions import RepositoryError
from .repository import CloudControllerRepository

CCDB_NAME = 'ccdb'


class DatabaseFactory:
    """Creates one repository per database and shares it between callers."""

    def __init__(self, connect: Callable = pymysql.connect):
        """Initialize the factory.

        Args:
            connect: Function opening a DB-API connection
        """
        self._connect = connect
        self._lock = asyncio.Lock()
        self._repositories: Dict[Tuple[str, int, str], CloudControllerRepository] = {}
        self._tunnels: List[Tuple[SSHTunnel, asyncio.Task]] = []
        self.logger = logger.bind(component='DatabaseFactory')

    async def new_ccdb(self, config: DatabaseConfig) -> CloudControllerRepository:
        """Return the repository for a database, connecting on first use.

        Args:
            config: Validated database settings

        Returns:
            Shared repository for that database

        Raises:
            RepositoryError: If the connection cannot be opened
            TunnelConfigurationError: If the tunnel settings are incomplete
        """
        cache_key = (config.db_host, config.db_port, config.db_username)

        async with self._lock:
            if cache_key in self._repositories:
                return self._repositories[cache_key]

            tunnel = new_tunnel(
                db_host=config.db_host,
                ssh_host=config.ssh_host,
                ssh_username=config.ssh_username,
                ssh_password=config.ssh_password,
                ssh_private_key=config.ssh_private_key,
                required=config.ssh_tunnel,
                remote_port=config.db_port,
            )

            host, port = config.db_host, config.db_port
            task: Optional[asyncio.Task] = None
            if tunnel is not None:
                task = asyncio.create_task(tunnel.start())
                try:
                    await tunnel.wait_ready()
                except OSError as e:
                    raise RepositoryError(f'failed to start ssh tunnel: {e}') from e
                host, port = tunnel.local.host, tunnel.local.port
                self.logger.info(
                    f'Connecting to ccdb {config.db_host} through {config.ssh_host}'
                )

            try:
                connection = await asyncio.to_thread(
                    self._connect,
                    host=host,
                    port=port,
                    user=config.db_username,
                    password=config.db_password,
                    database=CCDB_NAME,
                    autocommit=False,
                )
            except pymysql.MySQLError as e:
                if tunnel is not None:
                    tunnel.close()
                    task.cancel()
                raise RepositoryError(
                    f'failed to connect to ccdb at {config.db_host}: {e}'
                ) from e

            if tunnel is not None:
                self._tunnels.append((tunnel, task))

            repository = CloudControllerRepository(connection)
            self._repositories[cache_key] = repository
            return repository

    async def close(self) -> None:
        """Close every connection and tunnel opened by this factory."""
        async with self._lock:
            for repository in self._repositories.values():
                try:
                    repository.close()
                except pymysql.MySQLError as e:
                    self.logger.warning(f'Failed to close ccdb connection: {e}')
            self._repositories.clear()

            for tunnel, task in self._tunnels:
                tunnel.close()
                task.cancel()
            if self._tunnels:
                await asyncio.gather(
                    *(task for _, task in self._tunnels), return_exceptions=True
                )
            self._tunnels.clear()
