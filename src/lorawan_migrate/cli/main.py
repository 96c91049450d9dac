"""Main CLI entry point for LoRaWAN Migration Tool."""

import sys
import asyncio
from typing import Awaitable, Callable, Optional, Tuple, TypeVar
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..models.migration import BatchSummary, DiscoverySummary, MigrationStatus
from ..utils.logging import setup_logging
from ..migration.engine import MigrationEngine

console = Console()

T = TypeVar('T')

DEFAULT_CONFIG_PATHS = ['config.yaml', 'config.yml', '.lorawan-migrate.yaml']

STATUS_STYLES = {
    MigrationStatus.COMPLETED: 'green',
    MigrationStatus.REQUIRES_MANUAL_STEPS: 'yellow',
    MigrationStatus.FAILED: 'red',
    MigrationStatus.IN_PROGRESS: 'blue',
    MigrationStatus.PENDING: 'white',
}


@click.group()
@click.version_option(version=__version__, prog_name='lorawan-migrate')
@click.option(
    '--config',
    '-c',
    type=click.Path(exists=True),
    help='Path to configuration file',
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Enable verbose logging',
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], verbose: bool) -> None:
    """LoRaWAN Migration Tool - Move devices and join keys between LoRaWAN network servers."""
    ctx.ensure_object(dict)

    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Basic logging until the configuration is loaded
    log_level = 'DEBUG' if verbose else 'INFO'
    setup_logging(log_level)


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
            '[bold green]LoRaWAN Migration Tool[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your backend URLs, API keys '
            f'and tenant IDs[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the migration configuration."""
    console.print(
        Panel.fit(
            '[bold magenta]LoRaWAN Migration Tool[/bold magenta]\nMigration Status',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        table = Table(title='Migration Configuration')
        table.add_column('Setting', style='cyan')
        table.add_column('Source', style='green')
        table.add_column('Target', style='green')

        table.add_row('Name', config.source.name, config.target.name)
        table.add_row('URL', config.source.url, config.target.url)
        table.add_row(
            'Protocol', config.source.protocol.value, config.target.protocol.value
        )
        table.add_row(
            'Tenant', config.source.tenant_id or '-', config.target.tenant_id or '-'
        )
        table.add_row(
            'LoRaWAN Version',
            config.source.lorawan_version.value,
            config.target.lorawan_version.value,
        )
        table.add_row(
            'Session Activation',
            '✓' if config.source.activation_supported else '✗',
            '✓' if config.target.activation_supported else '✗',
        )
        console.print(table)

        settings = Table(title='Migration Settings')
        settings.add_column('Setting', style='cyan')
        settings.add_column('Value', style='green')
        settings.add_row('Batch Size', str(config.migration.batch_size))
        settings.add_row('Batch Pause', f'{config.migration.batch_pause}s')
        settings.add_row('Key Settle Delay', f'{config.migration.key_settle_delay}s')
        settings.add_row(
            'Skip FCnt Check', '✓' if config.migration.skip_fcnt_check else '✗'
        )
        settings.add_row(
            'Activate Sessions', '✓' if config.migration.activate_sessions else '✗'
        )
        settings.add_row(
            'Target Application', config.migration.target_application_id or '-'
        )
        settings.add_row(
            'Target Device Profile', config.migration.target_device_profile_id or '-'
        )
        settings.add_row('Record Store', config.store.url)
        console.print(settings)

    except Exception as e:
        _fail(ctx, 'Failed to load status', e)


@cli.command()
@click.pass_context
def validate(ctx: click.Context) -> None:
    """Test connectivity to both backends."""
    console.print(
        Panel.fit(
            '[bold cyan]LoRaWAN Migration Tool[/bold cyan]\nValidating connections...',
            border_style='cyan',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        results = asyncio.run(
            _run_with_engine(config, lambda engine: engine.test_connections())
        )

        table = Table(title='Connection Test')
        table.add_column('Backend', style='cyan')
        table.add_column('Status')
        table.add_column('Detail')
        for side, result in results.items():
            table.add_row(
                side.title(),
                '[green]✓ connected[/green]' if result.ok else '[red]✗ failed[/red]',
                result.detail or result.error or '',
            )
        console.print(table)

        if not all(result.ok for result in results.values()):
            console.print('[red]✗[/red] Connectivity validation failed')
            sys.exit(1)

        console.print('[green]✓[/green] Connectivity validation passed')

    except Exception as e:
        _fail(ctx, 'Validation failed', e)


@cli.command()
@click.option(
    '--side',
    type=click.Choice(['source', 'target']),
    default='source',
    help='Backend to query',
)
@click.pass_context
def tenants(ctx: click.Context, side: str) -> None:
    """List tenants visible to a backend's API key."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        items = asyncio.run(
            _run_with_engine(config, lambda engine: engine.client(side).list_tenants())
        )

        table = Table(title=f'Tenants ({side})')
        table.add_column('ID', style='cyan')
        table.add_column('Name', style='green')
        for tenant in items:
            table.add_row(tenant.id, tenant.name)
        console.print(table)

    except Exception as e:
        _fail(ctx, 'Failed to list tenants', e)


@cli.command()
@click.pass_context
def applications(ctx: click.Context) -> None:
    """List applications on both backends."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        listings = asyncio.run(
            _run_with_engine(config, lambda engine: engine.get_available_applications())
        )

        for side, listing in listings.items():
            if listing.error:
                console.print(f'[red]✗[/red] {side.title()} ({listing.backend}): {listing.error}')
                continue

            table = Table(title=f'{side.title()} Applications ({listing.backend})')
            table.add_column('ID', style='cyan')
            table.add_column('Name', style='green')
            table.add_column('Description')
            for app in listing.applications:
                table.add_row(app.id, app.name, app.description)
            console.print(table)

    except Exception as e:
        _fail(ctx, 'Failed to list applications', e)


@cli.command()
@click.pass_context
def profiles(ctx: click.Context) -> None:
    """List device profiles on both backends."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        listings = asyncio.run(
            _run_with_engine(
                config, lambda engine: engine.get_available_device_profiles()
            )
        )

        for side, listing in listings.items():
            if listing.error:
                console.print(f'[red]✗[/red] {side.title()} ({listing.backend}): {listing.error}')
                continue

            table = Table(title=f'{side.title()} Device Profiles ({listing.backend})')
            table.add_column('ID', style='cyan')
            table.add_column('Name', style='green')
            table.add_column('Region')
            table.add_column('MAC Version')
            for profile in listing.profiles:
                table.add_row(
                    profile.profile_id,
                    profile.name,
                    profile.region or '-',
                    profile.mac_version or '-',
                )
            console.print(table)

    except Exception as e:
        _fail(ctx, 'Failed to list device profiles', e)


@cli.command()
@click.option('--tenant-id', help='Source tenant (defaults to the configured one)')
@click.pass_context
def discover(ctx: click.Context, tenant_id: Optional[str]) -> None:
    """Copy all source devices and keys into the local record store."""
    console.print(
        Panel.fit(
            '[bold blue]LoRaWAN Migration Tool[/bold blue]\n'
            'Discovering source devices...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        summary = asyncio.run(
            _with_spinner(
                'Discovering devices',
                _run_with_engine(config, lambda engine: engine.discover(tenant_id)),
            )
        )
        _display_discovery_summary(summary)

    except Exception as e:
        _fail(ctx, 'Discovery failed', e)


@cli.command()
@click.option(
    '--application',
    '-a',
    'application_id',
    help='List a source application live instead of the local store',
)
@click.pass_context
def devices(ctx: click.Context, application_id: Optional[str]) -> None:
    """List discovered devices."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        if application_id:
            listing = asyncio.run(
                _run_with_engine(
                    config,
                    lambda engine: engine.get_devices_for_application(application_id),
                )
            )
            table = Table(title=f'Devices in application {application_id}')
            table.add_column('DevEUI', style='cyan')
            table.add_column('Name', style='green')
            table.add_column('Discovered')
            table.add_column('AppKey')
            table.add_column('Migrations')
            for entry in listing.devices:
                table.add_row(
                    entry.device.dev_eui,
                    entry.device.name,
                    '✓' if entry.has_local_data else '✗',
                    '✓' if entry.has_app_key else '[yellow]missing[/yellow]',
                    str(len(entry.migration_history)),
                )
            console.print(table)
            console.print(f'Total: {listing.total}')
            return

        local = asyncio.run(
            _run_with_engine(config, lambda engine: engine.store.get_all_devices())
        )
        table = Table(title='Local Devices')
        table.add_column('DevEUI', style='cyan')
        table.add_column('Name', style='green')
        table.add_column('Application')
        table.add_column('Device Profile')
        for device in local:
            table.add_row(
                device.dev_eui,
                device.name,
                device.application_name or device.application_id or '-',
                device.device_profile_id or '-',
            )
        console.print(table)
        console.print(f'Total: {len(local)}')

    except Exception as e:
        _fail(ctx, 'Failed to list devices', e)


@cli.command()
@click.argument('dev_euis', nargs=-1)
@click.option('--all', 'migrate_all', is_flag=True, help='Migrate every local device')
@click.option(
    '--application',
    '-a',
    'source_application_id',
    help='Migrate every device of this source application',
)
@click.option('--target-application', help='Target application ID')
@click.option('--target-profile', help='Target device profile ID')
@click.option('--batch-size', type=int, help='Devices migrated concurrently')
@click.option(
    '--skip-fcnt-check/--check-fcnt',
    default=None,
    help='Disable frame-counter validation on migrated devices',
)
@click.option(
    '--activate-sessions/--no-activate-sessions',
    default=None,
    help='Copy stored session state when the target supports it',
)
@click.pass_context
def migrate(
    ctx: click.Context,
    dev_euis: Tuple[str, ...],
    migrate_all: bool,
    source_application_id: Optional[str],
    target_application: Optional[str],
    target_profile: Optional[str],
    batch_size: Optional[int],
    skip_fcnt_check: Optional[bool],
    activate_sessions: Optional[bool],
) -> None:
    """Migrate devices to the target backend."""
    selectors = sum([bool(dev_euis), migrate_all, bool(source_application_id)])
    if selectors != 1:
        raise click.UsageError(
            'Give device EUIs, --all or --application (exactly one of them)'
        )

    console.print(
        Panel.fit(
            '[bold blue]LoRaWAN Migration Tool[/bold blue]\n'
            'Starting migration process...',
            border_style='blue',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        async def run(engine: MigrationEngine) -> BatchSummary:
            options = engine.build_options(
                target_application_id=target_application,
                target_device_profile_id=target_profile,
                skip_fcnt_check=skip_fcnt_check,
                activate_sessions=activate_sessions,
            )
            if source_application_id:
                return await engine.migrate_application(
                    source_application_id, options, batch_size=batch_size
                )
            if migrate_all:
                return await engine.migrate_all(options, batch_size=batch_size)
            return await engine.migrate_devices(
                list(dev_euis), options, batch_size=batch_size
            )

        summary = asyncio.run(
            _with_spinner('Migrating devices', _run_with_engine(config, run))
        )
        _display_migration_summary(summary)

    except Exception as e:
        _fail(ctx, 'Migration failed', e)


@cli.command()
@click.option('--dev-eui', help='Only show attempts for this device')
@click.option('--limit', type=int, default=100, show_default=True, help='Rows to show')
@click.pass_context
def history(ctx: click.Context, dev_eui: Optional[str], limit: int) -> None:
    """Show migration history, newest first."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        records = asyncio.run(
            _run_with_engine(
                config, lambda engine: engine.get_migration_history(dev_eui, limit)
            )
        )

        table = Table(title='Migration History')
        table.add_column('ID', style='cyan')
        table.add_column('DevEUI', style='cyan')
        table.add_column('Status')
        table.add_column('Started')
        table.add_column('Completed')
        table.add_column('Error')
        for record in records:
            style = STATUS_STYLES.get(record.status, 'white')
            table.add_row(
                str(record.id),
                record.dev_eui,
                f'[{style}]{record.status.value}[/{style}]',
                record.started_at.strftime('%Y-%m-%d %H:%M:%S'),
                record.completed_at.strftime('%Y-%m-%d %H:%M:%S')
                if record.completed_at
                else '-',
                record.error_message or '',
            )
        console.print(table)

        if dev_eui:
            for record in records:
                for note in record.notes:
                    console.print(f'  • {note}')

    except Exception as e:
        _fail(ctx, 'Failed to load history', e)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='lorawan-backup.json',
    show_default=True,
    help='Backup file path',
)
@click.pass_context
def export(ctx: click.Context, output: str) -> None:
    """Export local devices, keys and migration history as JSON."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        backup = asyncio.run(
            _run_with_engine(config, lambda engine: engine.export_backup(output))
        )

        metadata = backup['metadata']
        console.print(
            f'[green]✓[/green] Exported {metadata["total_devices"]} devices and '
            f'{metadata["total_migrations"]} migration records to {output}'
        )
        console.print('[yellow]The backup contains AppKeys; store it securely[/yellow]')

    except Exception as e:
        _fail(ctx, 'Export failed', e)


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)

    for path in DEFAULT_CONFIG_PATHS:
        if Path(path).exists():
            return Config.from_file(path)

    # Fall back to environment variables
    try:
        return Config.from_env()
    except ValueError:
        raise FileNotFoundError(
            'No configuration found. Use --config to specify a file or run '
            '"lorawan-migrate init" to create one.'
        )


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    verbose = ctx.obj.get('verbose', False)

    # Verbose flag overrides the configured level
    log_level = 'DEBUG' if verbose else config.logging.level
    setup_logging(
        level=log_level, log_file=config.logging.file, log_format=config.logging.format
    )


def _fail(ctx: click.Context, message: str, error: Exception) -> None:
    console.print(f'[red]✗[/red] {message}: {error}')
    if ctx.obj.get('verbose'):
        console.print_exception()
    sys.exit(1)


async def _run_with_engine(
    config: Config, action: Callable[[MigrationEngine], Awaitable[T]]
) -> T:
    """Run an engine action with the engine's clients and store opened."""
    async with MigrationEngine(config) as engine:
        return await action(engine)


async def _with_spinner(description: str, coro: Awaitable[T]) -> T:
    with Progress(
        SpinnerColumn(),
        TextColumn('[progress.description]{task.description}'),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(f'[blue]{description}...', total=None)
        return await coro


def _display_discovery_summary(summary: DiscoverySummary) -> None:
    table = Table(title='Discovery Summary')
    table.add_column('Total', style='blue')
    table.add_column('Synced', style='green')
    table.add_column('Errors', style='red')
    table.add_column('Profiles Cached', style='cyan')
    table.add_row(
        str(summary.total),
        str(summary.synced),
        str(len(summary.errors)),
        str(summary.profiles_cached),
    )
    console.print(table)

    _display_errors(
        [f'{e.dev_eui or e.application_id}: {e.error}' for e in summary.errors]
    )


def _display_migration_summary(summary: BatchSummary) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Total', style='blue')
    table.add_column('Successful', style='green')
    table.add_column('Manual Steps', style='yellow')
    table.add_column('Failed', style='red')
    table.add_column('Batches', style='cyan')
    table.add_row(
        str(summary.total),
        str(summary.successful),
        str(summary.manual_steps),
        str(summary.failed),
        str(summary.batches),
    )
    console.print(table)

    if summary.cancelled:
        console.print('[yellow]Migration was cancelled before all batches ran[/yellow]')

    manual = [r for r in summary.results if r.requires_manual_steps]
    if manual:
        console.print(f'\n[yellow]Manual steps required ({len(manual)}):[/yellow]')
        for result in manual:
            console.print(f'[bold]{result.dev_eui}[/bold]')
            for note in result.notes:
                console.print(f'  • {note}')

    _display_errors([f'{e.dev_eui}: {e.error}' for e in summary.errors])


def _display_errors(errors) -> None:
    if not errors:
        return

    console.print(f'\n[red]Errors ({len(errors)}):[/red]')
    for error in errors[:5]:  # Show first 5 errors
        console.print(f'  • {error}')
    if len(errors) > 5:
        console.print(f'  ... and {len(errors) - 5} more errors')


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print('\n[red]Migration interrupted by user[/red]')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]Error: {e}[/red]')
        sys.exit(1)


if __name__ == '__main__':
    main()
