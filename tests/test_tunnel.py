"""Tests for the SSH tunnel and the CCDB connection factory."""

import asyncio
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pymysql
import pytest

from si_migrator.ccdb.exceptions import RepositoryError
from si_migrator.ccdb.factory import DatabaseFactory
from si_migrator.config.config import ConfigurationError, DatabaseConfig
from si_migrator.net.tunnel import (
    Endpoint,
    SSHTunnel,
    TunnelConfigurationError,
    _copy,
    find_local_port,
    new_tunnel,
)


class TestNewTunnel:
    """Test tunnel construction."""

    def test_not_required(self):
        """Test that no tunnel is built unless required."""
        assert new_tunnel('10.0.0.5', '', '', required=False) is None

    def test_required_with_password(self):
        """Test the endpoints of a password tunnel."""
        tunnel = new_tunnel(
            '10.0.0.5', 'opsman', 'ubuntu', ssh_password='pw', required=True
        )

        assert str(tunnel.remote) == '10.0.0.5:3306'
        assert str(tunnel.server) == 'opsman:22'
        assert tunnel.local.host == 'localhost'
        assert tunnel.local.port > 0

    def test_required_but_incomplete(self):
        """Test that missing tunnel settings are reported together."""
        with pytest.raises(TunnelConfigurationError) as exc_info:
            new_tunnel('10.0.0.5', '', '', required=True)

        message = str(exc_info.value)
        assert 'tunneling is required' in message
        assert 'host' in message
        assert 'password or private key' in message
        assert isinstance(exc_info.value, ConfigurationError)


class TestConnectOptions:
    """Test SSH authentication selection."""

    def make_tunnel(self, **kwargs):
        return SSHTunnel(
            remote=Endpoint('10.0.0.5', 3306),
            server=Endpoint('opsman', 22),
            username='ubuntu',
            local=Endpoint('localhost', 40000),
            **kwargs,
        )

    def test_private_key_wins(self):
        """Test that a private key is preferred over a password."""
        options = self.make_tunnel(
            password='pw', private_key='/keys/opsman.pem'
        ).connect_options()

        assert options['client_keys'] == ['/keys/opsman.pem']
        assert options['agent_path'] is None
        assert 'password' not in options
        assert options['known_hosts'] is None
        assert options['connect_timeout'] == 5

    def test_password(self):
        """Test password authentication."""
        options = self.make_tunnel(password='pw').connect_options()

        assert options['password'] == 'pw'
        assert options['client_keys'] == ()

    def test_agent(self):
        """Test that the agent socket is used without key or password."""
        with patch.dict(os.environ, {'SSH_AUTH_SOCK': '/tmp/agent.sock'}):
            options = self.make_tunnel().connect_options()

        assert options['agent_path'] == '/tmp/agent.sock'


class TestCopy:
    """Test stream copying."""

    @pytest.mark.asyncio
    async def test_copy_until_eof(self):
        """Test that data is copied and EOF forwarded."""
        reader = asyncio.StreamReader()
        reader.feed_data(b'hello ')
        reader.feed_data(b'world')
        reader.feed_eof()

        writer = MagicMock()
        writer.drain = AsyncMock()
        writer.is_closing.return_value = False
        writer.can_write_eof.return_value = True
        written = []
        writer.write.side_effect = written.append

        await _copy(reader, writer)

        assert b''.join(written) == b'hello world'
        writer.write_eof.assert_called_once()


class RecordingWriter:
    """Remote end of a forwarded channel that keeps what it is sent."""

    def __init__(self):
        self.data = bytearray()
        self.eof = asyncio.Event()

    def write(self, data):
        self.data.extend(data)

    async def drain(self):
        pass

    def is_closing(self):
        return False

    def can_write_eof(self):
        return True

    def write_eof(self):
        self.eof.set()


class TestForwarding:
    """Test the local listener and the forwarded SSH channel."""

    def make_tunnel(self):
        return SSHTunnel(
            remote=Endpoint('10.0.0.5', 3306),
            server=Endpoint('opsman', 22),
            username='ubuntu',
            password='pw',
            local=Endpoint('127.0.0.1', find_local_port('127.0.0.1')),
        )

    def make_connect(self, remote_reader, remote_writer):
        conn = MagicMock()
        conn.open_connection = AsyncMock(return_value=(remote_reader, remote_writer))
        connect = MagicMock()
        connect.return_value.__aenter__.return_value = conn
        return connect, conn

    @pytest.mark.asyncio
    async def test_bytes_flow_both_ways(self):
        """Test that a local connection is relayed to the remote host and back."""
        tunnel = self.make_tunnel()
        remote_reader = asyncio.StreamReader()
        remote_writer = RecordingWriter()
        connect, conn = self.make_connect(remote_reader, remote_writer)

        with patch('si_migrator.net.tunnel.asyncssh.connect', connect):
            task = asyncio.create_task(tunnel.start())
            await tunnel.wait_ready()

            reader, writer = await asyncio.open_connection(
                tunnel.local.host, tunnel.local.port
            )
            writer.write(b'client hello')
            await writer.drain()
            writer.write_eof()
            await asyncio.wait_for(remote_writer.eof.wait(), 1)

            remote_reader.feed_data(b'server hello')
            remote_reader.feed_eof()
            received = await asyncio.wait_for(reader.read(), 1)

            writer.close()
            await writer.wait_closed()
            tunnel.close()
            await asyncio.wait([task], timeout=1)

        assert bytes(remote_writer.data) == b'client hello'
        assert received == b'server hello'
        connect.assert_called_once_with(**tunnel.connect_options())
        conn.open_connection.assert_awaited_once_with('10.0.0.5', 3306)
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_ssh_failure_closes_local_connection(self):
        """Test that a failed SSH hop drops the local connection."""
        tunnel = self.make_tunnel()
        connect = MagicMock()
        connect.return_value.__aenter__.side_effect = OSError('connection refused')

        with patch('si_migrator.net.tunnel.asyncssh.connect', connect):
            task = asyncio.create_task(tunnel.start())
            await tunnel.wait_ready()

            reader, writer = await asyncio.open_connection(
                tunnel.local.host, tunnel.local.port
            )
            received = await asyncio.wait_for(reader.read(), 1)

            writer.close()
            await writer.wait_closed()
            tunnel.close()
            await asyncio.wait([task], timeout=1)

        assert received == b''
        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_listen_failure_is_reported(self):
        """Test that a port already in use surfaces from wait_ready."""
        server = await asyncio.start_server(lambda r, w: None, '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]
        tunnel = SSHTunnel(
            remote=Endpoint('10.0.0.5', 3306),
            server=Endpoint('opsman', 22),
            username='ubuntu',
            password='pw',
            local=Endpoint('127.0.0.1', port),
        )

        try:
            await tunnel.start()
            with pytest.raises(OSError):
                await tunnel.wait_ready()
        finally:
            server.close()
            await server.wait_closed()


class TestDatabaseFactory:
    """Test CCDB repository creation."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = DatabaseConfig(
            db_host='10.0.0.5',
            db_username='ccadmin',
            db_password='secret',
            db_encryption_key='key',
        )

    @pytest.mark.asyncio
    async def test_direct_connection_is_shared(self):
        """Test that one repository is created per database."""
        connect = MagicMock(return_value=MagicMock())
        factory = DatabaseFactory(connect=connect)

        first = await factory.new_ccdb(self.config)
        second = await factory.new_ccdb(self.config)

        assert first is second
        connect.assert_called_once_with(
            host='10.0.0.5',
            port=3306,
            user='ccadmin',
            password='secret',
            database='ccdb',
            autocommit=False,
        )

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        """Test that driver errors become RepositoryError."""
        connect = MagicMock(side_effect=pymysql.OperationalError(2003, 'refused'))
        factory = DatabaseFactory(connect=connect)

        with pytest.raises(RepositoryError, match='failed to connect to ccdb'):
            await factory.new_ccdb(self.config)

    @pytest.mark.asyncio
    async def test_incomplete_tunnel(self):
        """Test that a required but incomplete tunnel is rejected."""
        factory = DatabaseFactory(connect=MagicMock())
        config = self.config.model_copy(update={'ssh_tunnel': True})

        with pytest.raises(TunnelConfigurationError):
            await factory.new_ccdb(config)

    @pytest.mark.asyncio
    async def test_close(self):
        """Test that closing releases the connections."""
        connection = MagicMock()
        factory = DatabaseFactory(connect=MagicMock(return_value=connection))
        await factory.new_ccdb(self.config)

        await factory.close()

        connection.close.assert_called_once()
