"""Main CLI entry point for the service instance migrator."""

import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from .. import __version__
from ..ccdb.crypto import EncryptionError, decrypt, encrypt
from ..config.config import Config, ConfigurationError
from ..migration.engine import MigrationEngine
from ..migration.summary import Summary
from ..utils.logging import setup_logging

console = Console()

DEFAULT_CONFIG_PATHS = ('config.yaml', 'config.yml', 'si-migrator.yaml')

Operation = Callable[[MigrationEngine], Awaitable[Summary]]


@click.group()
@click.version_option(version=__version__, prog_name='si-migrator')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--debug',
    is_flag=True,
    help='Enable debug logging',
)
@click.option(
    '--non-interactive',
    '-n',
    is_flag=True,
    help="Don't ask for user input",
)
@click.pass_context
def cli(
    ctx: click.Context, config: Optional[str], debug: bool, non_interactive: bool
) -> None:
    """Service Instance Migrator - Move service instances between Cloud Foundry foundations."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['debug'] = debug
    ctx.obj['non_interactive'] = non_interactive

    setup_logging('DEBUG' if debug else 'INFO')


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
def init(output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Service Instance Migrator[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)
    except OSError as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)

    console.print(f'[green]✓[/green] Configuration template created at: {output}')
    console.print(
        f'[yellow]Please edit {output} with your foundation and CCDB details[/yellow]'
    )


def _filter_options(func):
    """Options shared by every export and import command."""
    options = [
        click.option(
            '--include-orgs',
            multiple=True,
            help='Regex of orgs to include (repeatable)',
        ),
        click.option(
            '--exclude-orgs',
            multiple=True,
            help='Regex of orgs to exclude (repeatable)',
        ),
        click.option(
            '--instances',
            multiple=True,
            help='Service instance name to migrate (repeatable)',
        ),
        click.option(
            '--services',
            multiple=True,
            help='Service label or migrator to migrate (repeatable)',
        ),
        click.option(
            '--dry-run',
            is_flag=True,
            help='Perform a dry run without making changes',
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _export_dir_option(func):
    return click.option(
        '--export-dir',
        type=click.Path(file_okay=False),
        help='Directory to write exported service instances to',
    )(func)


def _import_dir_option(func):
    return click.option(
        '--import-dir',
        type=click.Path(exists=True, file_okay=False),
        help='Directory to read exported service instances from',
    )(func)


@cli.group(name='export')
def export_group() -> None:
    """Export service instances from the source foundation."""
    pass


@export_group.command(name='org')
@click.argument('orgs', nargs=-1, required=True)
@_export_dir_option
@_filter_options
@click.pass_context
def export_org(ctx: click.Context, orgs: Tuple[str, ...], export_dir, **filters) -> None:
    """Export the service instances of one or more orgs."""
    directory = _path(export_dir)
    _run(
        ctx,
        'Export',
        lambda e: e.export_orgs(*orgs, directory=directory),
        filters,
        is_export=True,
        export_dir=directory,
    )


@export_group.command(name='space')
@click.argument('space')
@click.option('--org', '-o', required=True, help='Org the space belongs to')
@_export_dir_option
@_filter_options
@click.pass_context
def export_space(ctx: click.Context, space: str, org: str, export_dir, **filters) -> None:
    """Export the service instances of a space."""
    directory = _path(export_dir)
    _run(
        ctx,
        'Export',
        lambda e: e.export_space(org, space, directory=directory),
        filters,
        is_export=True,
        export_dir=directory,
    )


@export_group.command(name='all')
@_export_dir_option
@_filter_options
@click.pass_context
def export_all(ctx: click.Context, export_dir, **filters) -> None:
    """Export the service instances of every org."""
    directory = _path(export_dir)
    _run(
        ctx,
        'Export',
        lambda e: e.export_all(directory=directory),
        filters,
        is_export=True,
        export_dir=directory,
    )


@cli.group(name='import')
def import_group() -> None:
    """Import exported service instances into the target foundation."""
    pass


@import_group.command(name='org')
@click.argument('orgs', nargs=-1, required=True)
@_import_dir_option
@_filter_options
@click.pass_context
def import_org(ctx: click.Context, orgs: Tuple[str, ...], import_dir, **filters) -> None:
    """Import the service instances of one or more orgs."""
    directory = _path(import_dir)
    _run(ctx, 'Import', lambda e: e.import_orgs(*orgs, directory=directory), filters)


@import_group.command(name='space')
@click.argument('space')
@click.option('--org', '-o', required=True, help='Org the space belongs to')
@_import_dir_option
@_filter_options
@click.pass_context
def import_space(ctx: click.Context, space: str, org: str, import_dir, **filters) -> None:
    """Import the service instances of a space."""
    directory = _path(import_dir)
    _run(ctx, 'Import', lambda e: e.import_space(org, space, directory=directory), filters)


@import_group.command(name='all')
@_import_dir_option
@_filter_options
@click.pass_context
def import_all(ctx: click.Context, import_dir, **filters) -> None:
    """Import every exported service instance."""
    directory = _path(import_dir)
    _run(ctx, 'Import', lambda e: e.import_all(directory=directory), filters)


@cli.group(name='crypto')
def crypto_group() -> None:
    """Encrypt or decrypt Cloud Controller database payloads."""
    pass


def _crypto_options(func):
    options = [
        click.option('--data', required=True, help='Data to encrypt or decrypt'),
        click.option('--salt', required=True, help='Salt used in encryption'),
        click.option('--key', required=True, help='Database encryption key'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@crypto_group.command(name='encrypt')
@_crypto_options
def crypto_encrypt(data: str, salt: str, key: str) -> None:
    """Encrypt a payload the way the Cloud Controller stores it."""
    _crypt(encrypt, 'encrypt', data, salt, key)


@crypto_group.command(name='decrypt')
@_crypto_options
def crypto_decrypt(data: str, salt: str, key: str) -> None:
    """Decrypt a payload read from the Cloud Controller database."""
    _crypt(decrypt, 'decrypt', data, salt, key)


def _crypt(
    func: Callable[[str, str, str], str], action: str, data: str, salt: str, key: str
) -> None:
    try:
        click.echo(func(data, salt, key))
    except EncryptionError as e:
        console.print(f'[red]✗[/red] Failed to {action} data: {e}')
        sys.exit(1)


def _path(value: Optional[str]) -> Optional[Path]:
    return Path(value) if value else None


def _run(
    ctx: click.Context,
    name: str,
    operation: Operation,
    filters: dict,
    is_export: bool = False,
    export_dir: Optional[Path] = None,
) -> None:
    """Load the configuration, run an operation and report its summary.

    The summary is displayed even when the run stops on an error, so the
    instances already handled are never lost from view.

    Args:
        ctx: Click context
        name: Operation name used in messages
        operation: Coroutine function run against the engine
        filters: Command line filters overriding the configuration
        is_export: Whether the operation writes to an export directory
        export_dir: Directory given on the command line
    """
    console.print(
        Panel.fit(
            f'[bold blue]Service Instance Migrator[/bold blue]\n{name} starting...',
            border_style='blue',
        )
    )

    engine: Optional[MigrationEngine] = None
    exit_code = 0
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)
        _apply_filters(config, **filters)

        if is_export and not ctx.obj.get('non_interactive'):
            _confirm_export_dir(export_dir or Path(config.migration.export_dir))

        if config.migration.dry_run:
            console.print(
                '[yellow]Running in dry-run mode - no changes will be made[/yellow]'
            )

        engine = MigrationEngine(config)
        asyncio.run(_execute(engine, operation))
    except click.Abort:
        raise
    except KeyboardInterrupt:
        console.print(f'\n[red]{name} interrupted by user[/red]')
        exit_code = 130
    except Exception as e:
        console.print(f'[red]✗[/red] {name} failed: {e}')
        if ctx.obj.get('debug'):
            console.print_exception()
        exit_code = 1

    if engine is not None:
        engine.summary.display(console)
        if not exit_code and engine.summary.failure_count:
            exit_code = 1
    if exit_code:
        sys.exit(exit_code)
    console.print(f'[green]✓[/green] {name} completed')


def _confirm_export_dir(directory: Path) -> None:
    """Ask before exporting into a directory that already has content."""
    if directory.is_dir() and any(directory.iterdir()):
        click.confirm(
            f'Export directory {directory} is not empty. Do you wish to continue?',
            abort=True,
        )


async def _execute(engine: MigrationEngine, operation: Operation) -> Summary:
    try:
        return await operation(engine)
    finally:
        await engine.close()


def _apply_filters(
    config: Config,
    include_orgs: Tuple[str, ...] = (),
    exclude_orgs: Tuple[str, ...] = (),
    instances: Tuple[str, ...] = (),
    services: Tuple[str, ...] = (),
    dry_run: bool = False,
) -> None:
    """Let command line flags override the configuration file."""
    migration = config.migration
    if include_orgs:
        migration.include_orgs = list(include_orgs)
    if exclude_orgs:
        migration.exclude_orgs = list(exclude_orgs)
    if instances:
        migration.instances = list(instances)
    if services:
        migration.services = list(services)
    if dry_run:
        migration.dry_run = True


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        return Config.from_file(config_path)

    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return Config.from_file(path)

    try:
        return Config.from_env()
    except (ValueError, ConfigurationError) as e:
        raise ConfigurationError(
            'No configuration found. Use --config to specify a file or run '
            '"si-migrator init" to create one.'
        ) from e


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    log_level = 'DEBUG' if ctx.obj.get('debug') else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(130)


if __name__ == '__main__':
    main()
