"""Tests for CLI interface."""

import os
import tempfile
from unittest.mock import AsyncMock, MagicMock, patch

from click.testing import CliRunner

from si_migrator.ccdb.crypto import encrypt
from si_migrator.cli.main import cli, init
from si_migrator.config.config import Config, ConfigurationError
from si_migrator.migration.summary import Summary


def make_config(**migration):
    return Config(
        source_api={'url': 'https://api.cf1.example.com', 'username': 'u', 'password': 'p'},
        target_api={'url': 'https://api.cf2.example.com', 'username': 'u', 'password': 'p'},
        migration=migration,
    )


def make_engine(summary=None):
    """Build an engine class mock whose runs return ``summary``."""
    summary = summary or Summary()
    engine = MagicMock()
    for name in (
        'export_orgs',
        'export_space',
        'export_all',
        'import_orgs',
        'import_space',
        'import_all',
    ):
        setattr(engine, name, AsyncMock(return_value=summary))
    engine.close = AsyncMock()
    engine.summary = summary
    return MagicMock(return_value=engine), engine


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_cli_help(self):
        """Test CLI help command."""
        result = self.runner.invoke(cli, ['--help'])

        assert result.exit_code == 0
        assert 'Service Instance Migrator' in result.output
        assert 'init' in result.output
        assert 'export' in result.output
        assert 'import' in result.output

    def test_cli_version(self):
        """Test CLI version command."""
        result = self.runner.invoke(cli, ['--version'])

        assert result.exit_code == 0
        assert '0.1.0' in result.output

    def test_init_command(self):
        """Test init command."""
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, 'test_config.yaml')

            result = self.runner.invoke(init, ['--output', config_path])

            assert result.exit_code == 0
            assert 'Configuration template created' in result.output
            with open(config_path, 'r') as f:
                content = f.read()
            assert 'source_api:' in content
            assert 'target_api:' in content
            assert 'migration:' in content

    @patch('si_migrator.cli.main._load_config')
    def test_export_org(self, mock_load_config):
        """Test that export org runs the engine and closes it."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()

        with patch('si_migrator.cli.main.MigrationEngine', engine_class):
            result = self.runner.invoke(
                cli, ['export', 'org', 'org1', 'org2', '--export-dir', 'out']
            )

        assert result.exit_code == 0, result.output
        assert 'Export completed' in result.output
        assert 'Migration summary: 0 successes' in result.output
        (org_a, org_b), kwargs = engine.export_orgs.await_args
        assert (org_a, org_b) == ('org1', 'org2')
        assert str(kwargs['directory']) == 'out'
        engine.close.assert_awaited_once()

    @patch('si_migrator.cli.main._load_config')
    def test_filters_override_config(self, mock_load_config):
        """Test that command line filters are applied to the configuration."""
        config = make_config()
        mock_load_config.return_value = config
        engine_class, _ = make_engine()

        with patch('si_migrator.cli.main.MigrationEngine', engine_class):
            result = self.runner.invoke(
                cli,
                [
                    'export',
                    'space',
                    'space1',
                    '--org',
                    'org1',
                    '--services',
                    'ecs',
                    '--instances',
                    'bucket',
                    '--exclude-orgs',
                    '^system$',
                    '--dry-run',
                ],
            )

        assert result.exit_code == 0, result.output
        assert 'dry-run mode' in result.output
        engine_class.assert_called_once_with(config)
        assert config.migration.services == ['ecs']
        assert config.migration.instances == ['bucket']
        assert config.migration.exclude_orgs == ['^system$']
        assert config.migration.dry_run is True

    @patch('si_migrator.cli.main._load_config')
    def test_failures_exit_non_zero(self, mock_load_config):
        """Test that failed instances fail the command."""
        mock_load_config.return_value = make_config()
        summary = Summary()
        summary.add_failed('org1', 'space1', 'bucket', 'ecs-bucket', 'shared instance')
        engine_class, _ = make_engine(summary)

        with patch('si_migrator.cli.main.MigrationEngine', engine_class):
            result = self.runner.invoke(cli, ['export', 'all'])

        assert result.exit_code == 1
        assert 'shared instance' in result.output

    @patch('si_migrator.cli.main._load_config')
    def test_import_all(self, mock_load_config):
        """Test that import all uses the engine."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()

        with tempfile.TemporaryDirectory() as temp_dir:
            with patch('si_migrator.cli.main.MigrationEngine', engine_class):
                result = self.runner.invoke(cli, ['import', 'all', '--import-dir', temp_dir])

        assert result.exit_code == 0, result.output
        engine.import_all.assert_awaited_once()

    @patch('si_migrator.cli.main._load_config')
    def test_config_not_found(self, mock_load_config):
        """Test that a missing configuration fails the command."""
        mock_load_config.side_effect = ConfigurationError('No configuration found.')

        result = self.runner.invoke(cli, ['import', 'org', 'org1'])

        assert result.exit_code == 1
        assert 'No configuration found' in result.output

    @patch('si_migrator.cli.main._load_config')
    def test_run_error(self, mock_load_config):
        """Test that an engine error fails the command and closes the engine."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()
        engine.export_orgs.side_effect = RuntimeError('boom')

        with patch('si_migrator.cli.main.MigrationEngine', engine_class):
            result = self.runner.invoke(cli, ['export', 'org', 'org1'])

        assert result.exit_code == 1
        assert 'Export failed: boom' in result.output
        engine.close.assert_awaited_once()

    def test_export_org_requires_orgs(self):
        """Test that export org needs at least one org."""
        result = self.runner.invoke(cli, ['export', 'org'])

        assert result.exit_code == 2

    @patch('si_migrator.cli.main._load_config')
    def test_summary_shown_when_run_fails(self, mock_load_config):
        """Test that results recorded before a fatal error are still displayed."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()

        async def export_all(directory=None):
            engine.summary.add_failed(
                'org1', 'space1', 'lost-instance', 'ecs-bucket', 'delete failed'
            )
            raise RuntimeError('listing spaces failed')

        engine.export_all.side_effect = export_all

        with patch('si_migrator.cli.main.MigrationEngine', engine_class):
            result = self.runner.invoke(cli, ['-n', 'export', 'all'])

        assert result.exit_code == 1
        assert 'Export failed: listing spaces failed' in result.output
        assert 'lost-instance' in result.output
        engine.close.assert_awaited_once()

    @patch('si_migrator.cli.main._load_config')
    def test_non_empty_export_dir_declined(self, mock_load_config):
        """Test that declining the prompt leaves the engine untouched."""
        mock_load_config.return_value = make_config()
        engine_class, _ = make_engine()

        with self.runner.isolated_filesystem():
            os.makedirs('out/org1')
            with patch('si_migrator.cli.main.MigrationEngine', engine_class):
                result = self.runner.invoke(
                    cli, ['export', 'all', '--export-dir', 'out'], input='n\n'
                )

        assert result.exit_code == 1
        assert 'is not empty' in result.output
        engine_class.assert_not_called()

    @patch('si_migrator.cli.main._load_config')
    def test_non_empty_export_dir_confirmed(self, mock_load_config):
        """Test that confirming the prompt runs the export."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()

        with self.runner.isolated_filesystem():
            os.makedirs('out/org1')
            with patch('si_migrator.cli.main.MigrationEngine', engine_class):
                result = self.runner.invoke(
                    cli, ['export', 'all', '--export-dir', 'out'], input='y\n'
                )

        assert result.exit_code == 0, result.output
        engine.export_all.assert_awaited_once()

    @patch('si_migrator.cli.main._load_config')
    def test_non_interactive_skips_prompt(self, mock_load_config):
        """Test that --non-interactive exports without asking."""
        mock_load_config.return_value = make_config()
        engine_class, engine = make_engine()

        with self.runner.isolated_filesystem():
            os.makedirs('out/org1')
            with patch('si_migrator.cli.main.MigrationEngine', engine_class):
                result = self.runner.invoke(
                    cli, ['--non-interactive', 'export', 'all', '--export-dir', 'out']
                )

        assert result.exit_code == 0, result.output
        assert 'is not empty' not in result.output
        engine.export_all.assert_awaited_once()


class TestCryptoCommands:
    """Test the CCDB payload encryption commands."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()
        self.options = ['--salt', '0123456789abcdef', '--key', 'db-encryption-key']

    def test_encrypt(self):
        """Test that encrypt prints the ciphertext."""
        result = self.runner.invoke(
            cli, ['crypto', 'encrypt', '--data', '{"a": 1}'] + self.options
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == encrypt(
            '{"a": 1}', '0123456789abcdef', 'db-encryption-key'
        )

    def test_decrypt(self):
        """Test that decrypt prints the plaintext."""
        ciphertext = encrypt('{"a": 1}', '0123456789abcdef', 'db-encryption-key')

        result = self.runner.invoke(
            cli, ['crypto', 'decrypt', '--data', ciphertext] + self.options
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == '{"a": 1}'

    def test_decrypt_requires_key(self):
        """Test that the key option is mandatory."""
        ciphertext = encrypt('{"a": 1}', '0123456789abcdef', 'db-encryption-key')

        result = self.runner.invoke(
            cli,
            ['crypto', 'decrypt', '--data', ciphertext, '--salt', '0123456789abcdef'],
        )

        assert result.exit_code == 2
        assert '--key' in result.output

    def test_decrypt_garbage(self):
        """Test that a malformed payload is reported."""
        result = self.runner.invoke(
            cli, ['crypto', 'decrypt', '--data', 'bm90IGNpcGhlcnRleHQ='] + self.options
        )

        assert result.exit_code == 1
        assert 'Failed to decrypt data' in result.output
