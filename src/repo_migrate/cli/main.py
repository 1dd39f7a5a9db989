"""Main CLI entry point for the repository migration tool."""

import sys
import asyncio
from typing import Any, Dict, List, Optional
from pathlib import Path

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..config.config import Config
from ..utils.logging import setup_logging
from ..migration.engine import MigrationEngine
from ..migration.orchestrator import MigrationOutcome, MigrationResult, MigrationSummary
from ..models.descriptor import MigrationDescriptor, SourcePlatform

console = Console()

OUTCOME_STYLES = {
    MigrationOutcome.SUCCEEDED: 'green',
    MigrationOutcome.QUEUED: 'blue',
    MigrationOutcome.SKIPPED: 'yellow',
    MigrationOutcome.FAILED: 'red',
}


@click.group()
@click.version_option(version=__version__, prog_name='repo-migrate')
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
    """Repository Migration Tool - Migrate repositories from GitHub, Azure DevOps and Bitbucket Server into GitHub."""
    ctx.ensure_object(dict)

    # Store config path and verbose flag
    if config:
        ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose

    # Setup basic logging first (will be enhanced later with config)
    setup_logging(verbose=verbose)


@cli.command()
@click.option(
    '--output',
    '-o',
    default='config.yaml',
    help='Output configuration file path',
)
@click.pass_context
def init(ctx: click.Context, output: str) -> None:
    """Initialize a new configuration file."""
    console.print(
        Panel.fit(
            '[bold green]Repository Migration Tool[/bold green]\n'
            'Initializing configuration...',
            border_style='green',
        )
    )

    try:
        Config.create_template(output)

        console.print(f'[green]✓[/green] Configuration template created at: {output}')
        console.print(
            f'[yellow]Please edit {output} with your tokens and storage settings[/yellow]'
        )

    except Exception as e:
        console.print(f'[red]✗[/red] Failed to create configuration: {e}')
        sys.exit(1)


@cli.command('migrate-repo')
@click.option(
    '--source-platform',
    type=click.Choice([platform.value for platform in SourcePlatform]),
    default=SourcePlatform.GITHUB.value,
    show_default=True,
    help='Platform the repository is migrated from',
)
@click.option('--source-org', help='Source organization (GitHub, Azure DevOps)')
@click.option('--source-project', help='Team project (Azure DevOps) or project key (Bitbucket)')
@click.option('--source-repo', required=True, help='Source repository name or slug')
@click.option('--ghes-api-url', help='API URL of a GitHub Enterprise Server source')
@click.option('--server-url', help='Azure DevOps or Bitbucket Server URL')
@click.option('--target-org', required=True, help='Target GitHub organization')
@click.option('--target-repo', help='Target repository name, defaults to the source repo')
@click.option('--azure-storage', is_flag=True, help='Stage archives in Azure Blob Storage')
@click.option('--aws-bucket-name', help='Stage archives in this AWS S3 bucket')
@click.option('--github-storage', is_flag=True, help='Stage archives in GitHub-owned storage')
@click.option('--git-archive-path', help='Local git archive to upload')
@click.option('--metadata-archive-path', help='Local metadata archive to upload')
@click.option('--git-archive-url', help='Already uploaded git archive URL')
@click.option('--metadata-archive-url', help='Already uploaded metadata archive URL')
@click.option('--archive-path', help='Local Bitbucket Server export archive to upload')
@click.option('--archive-url', help='Already uploaded Bitbucket Server export URL')
@click.option('--skip-releases', is_flag=True, help='Do not migrate releases')
@click.option('--lock-source', is_flag=True, help='Lock the source repository')
@click.option('--queue-only', is_flag=True, help='Return once the migration is queued')
@click.option(
    '--target-repo-visibility',
    type=click.Choice(['public', 'private', 'internal']),
    help='Visibility of the target repository',
)
@click.option('--keep-archive', is_flag=True, help='Keep downloaded archives on disk')
@click.pass_context
def migrate_repo(ctx: click.Context, **options: Any) -> None:
    """Migrate a single repository."""
    console.print(
        Panel.fit(
            '[bold blue]Repository Migration Tool[/bold blue]\n'
            'Starting repository migration...',
            border_style='blue',
        )
    )

    try:
        descriptor = _descriptor_from_options(options)

        # Load configuration
        config = _load_config(ctx)

        # Setup logging with config file settings
        _setup_logging_with_config(ctx, config)

        result = asyncio.run(_run_single(config, descriptor))
        _display_result(result)

    except ValidationError as e:
        console.print(f'[red]✗[/red] Invalid migration options: {_validation_message(e)}')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]✗[/red] Migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    if result.outcome == MigrationOutcome.FAILED:
        sys.exit(1)


@cli.command()
@click.option(
    '--file',
    '-f',
    'descriptors_file',
    type=click.Path(exists=True),
    required=True,
    help='YAML file listing the repositories to migrate',
)
@click.pass_context
def migrate(ctx: click.Context, descriptors_file: str) -> None:
    """Migrate every repository listed in a YAML file."""
    console.print(
        Panel.fit(
            '[bold blue]Repository Migration Tool[/bold blue]\n'
            'Starting migration process...',
            border_style='blue',
        )
    )

    try:
        descriptors = _load_descriptors(descriptors_file)

        # Load configuration
        config = _load_config(ctx)

        # Setup logging with config file settings
        _setup_logging_with_config(ctx, config)

        summary = asyncio.run(MigrationEngine(config).migrate(descriptors))
        _display_migration_summary(summary)

    except ValidationError as e:
        console.print(f'[red]✗[/red] Invalid migration file: {_validation_message(e)}')
        sys.exit(1)
    except Exception as e:
        console.print(f'[red]✗[/red] Migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    if summary.failed:
        sys.exit(1)


@cli.command('wait-for-migration')
@click.option('--migration-id', required=True, help='Repository migration id')
@click.pass_context
def wait_for_migration(ctx: click.Context, migration_id: str) -> None:
    """Wait for a queued migration to finish."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        result = asyncio.run(_run_wait(config, migration_id))
        _display_result(result)

    except Exception as e:
        console.print(f'[red]✗[/red] Waiting for migration failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    if result.outcome == MigrationOutcome.FAILED:
        sys.exit(1)


@cli.command('abort-migration')
@click.option('--migration-id', required=True, help='Repository migration id')
@click.pass_context
def abort_migration(ctx: click.Context, migration_id: str) -> None:
    """Abort a queued or running migration."""
    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        aborted = asyncio.run(_run_abort(config, migration_id))

    except Exception as e:
        console.print(f'[red]✗[/red] Abort failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)

    if not aborted:
        console.print(f'[red]✗[/red] Migration {migration_id} could not be aborted')
        sys.exit(1)
    console.print(f'[green]✓[/green] Migration {migration_id} aborted')


@cli.command()
@click.option('--ado-org', required=True, help='Azure DevOps organization')
@click.option('--team-project', help='Restrict the inventory to one team project')
@click.pass_context
def inventory(ctx: click.Context, ado_org: str, team_project: Optional[str]) -> None:
    """List Azure DevOps repositories with pull requests, commits and pushers."""
    console.print(
        Panel.fit(
            '[bold magenta]Repository Migration Tool[/bold magenta]\nAzure DevOps Inventory',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        with MigrationEngine(config) as engine:
            rows = engine.inventory(ado_org, team_project)

        table = Table(title=f'Repositories in {ado_org}')
        table.add_column('Team Project', style='cyan')
        table.add_column('Repository', style='green')
        table.add_column('Size', style='blue')
        table.add_column('Pull Requests', style='magenta')
        table.add_column('Commits (1y)', style='yellow')
        table.add_column('Pushers (1y)', style='yellow')

        for row in rows:
            table.add_row(
                row['team_project'],
                row['repo'],
                str(row['size']) if row['size'] is not None else '-',
                str(row['pull_requests']),
                str(row['commits']),
                str(row['pushers']),
            )

        console.print(table)
        console.print(f'\n[blue]Total repositories:[/blue] {len(rows)}')

    except Exception as e:
        console.print(f'[red]✗[/red] Inventory failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


@cli.command('bbs-inventory')
@click.option('--bbs-server-url', required=True, help='Bitbucket Server URL')
@click.option('--bbs-project', help='Restrict the inventory to one project key')
@click.pass_context
def bbs_inventory(ctx: click.Context, bbs_server_url: str, bbs_project: Optional[str]) -> None:
    """List Bitbucket Server repositories by project."""
    console.print(
        Panel.fit(
            '[bold magenta]Repository Migration Tool[/bold magenta]\nBitbucket Server Inventory',
            border_style='magenta',
        )
    )

    try:
        config = _load_config(ctx)
        _setup_logging_with_config(ctx, config)

        with MigrationEngine(config) as engine:
            rows = engine.bbs_inventory(bbs_server_url, bbs_project)

        table = Table(title=f'Repositories on {bbs_server_url}')
        table.add_column('Project', style='cyan')
        table.add_column('Slug', style='green')
        table.add_column('Name', style='blue')

        for row in rows:
            table.add_row(row['project'], row['slug'], row['name'])

        console.print(table)
        console.print(f'\n[blue]Total repositories:[/blue] {len(rows)}')

    except Exception as e:
        console.print(f'[red]✗[/red] Inventory failed: {e}')
        if ctx.obj.get('verbose'):
            console.print_exception()
        sys.exit(1)


def _descriptor_from_options(options: Dict[str, Any]) -> MigrationDescriptor:
    """Build a migration descriptor from migrate-repo options."""
    platform = SourcePlatform(options['source_platform'])
    server_url = options['server_url']

    return MigrationDescriptor(
        source={
            'platform': platform,
            'org': options['source_org'],
            'project': options['source_project'],
            'repo': options['source_repo'],
            'api_url': options['ghes_api_url'],
            'server_url': server_url,
        },
        target_org=options['target_org'],
        target_repo=options['target_repo'],
        use_azure_storage=options['azure_storage'],
        aws_bucket_name=options['aws_bucket_name'],
        use_github_storage=options['github_storage'],
        git_archive_path=options['git_archive_path'],
        metadata_archive_path=options['metadata_archive_path'],
        git_archive_url=options['git_archive_url'],
        metadata_archive_url=options['metadata_archive_url'],
        archive_path=options['archive_path'],
        archive_url=options['archive_url'],
        skip_releases=options['skip_releases'],
        lock_source=options['lock_source'],
        queue_only=options['queue_only'],
        target_repo_visibility=options['target_repo_visibility'],
        keep_archive=options['keep_archive'],
    )


def _load_descriptors(path: str) -> List[MigrationDescriptor]:
    """Load migration descriptors from a YAML file.

    The file holds a `repositories` list; keys under an optional
    `defaults` mapping apply to every entry.
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    defaults = data.get('defaults') or {}
    entries = data.get('repositories') or []
    if not entries:
        raise ValueError(f'No repositories listed in {path}')

    return [MigrationDescriptor(**{**defaults, **entry}) for entry in entries]


def _validation_message(error: ValidationError) -> str:
    return '; '.join(err['msg'] for err in error.errors())


def _load_config(ctx: click.Context) -> Config:
    """Load configuration from file or environment."""
    config_path = ctx.obj.get('config_path')

    if config_path:
        if not Path(config_path).exists():
            raise FileNotFoundError(f'Configuration file not found: {config_path}')
        return Config.from_file(config_path)
    else:
        # Try to load from default locations
        default_paths = ['config.yaml', 'config.yml', '.repo-migrate.yaml']
        for path in default_paths:
            if Path(path).exists():
                return Config.from_file(path)

        # Fall back to environment variables
        try:
            return Config.from_env()
        except Exception as e:
            raise FileNotFoundError(
                'No configuration found. Use --config to specify a file or run '
                '"repo-migrate init" to create one.'
            ) from e


def _setup_logging_with_config(ctx: click.Context, config: Config) -> None:
    """Setup logging with configuration from config file."""
    setup_logging(
        level=config.logging.level,
        log_file=config.logging.file,
        log_format=config.logging.format,
        verbose=ctx.obj.get('verbose', False),
    )


async def _run_single(config: Config, descriptor: MigrationDescriptor) -> MigrationResult:
    with MigrationEngine(config) as engine:
        return await engine.migrate_repository(descriptor)


async def _run_wait(config: Config, migration_id: str) -> MigrationResult:
    with MigrationEngine(config) as engine:
        return await engine.wait_for_migration(migration_id)


async def _run_abort(config: Config, migration_id: str) -> bool:
    with MigrationEngine(config) as engine:
        return await engine.abort_migration(migration_id)


def _display_result(result: MigrationResult) -> None:
    """Display the outcome of one repository migration."""
    style = OUTCOME_STYLES[result.outcome]
    mark = '✗' if result.outcome == MigrationOutcome.FAILED else '✓'
    target = result.target or result.migration_id

    console.print(f'[{style}]{mark}[/{style}] {target}: {result.outcome.value.upper()}')
    if result.migration_id:
        console.print(f'  Migration ID: {result.migration_id}')
    if result.reason:
        console.print(f'  [{style}]{result.reason}[/{style}]')
    if result.warnings_count:
        console.print(f'  [yellow]{result.warnings_count} warnings[/yellow]')
    if result.migration_log_url:
        console.print(f'  Migration log: {result.migration_log_url}')


def _display_migration_summary(summary: MigrationSummary) -> None:
    """Display migration summary results."""
    table = Table(title='Migration Summary')
    table.add_column('Source', style='cyan')
    table.add_column('Target', style='blue')
    table.add_column('Outcome')
    table.add_column('Details')

    for result in summary.results:
        style = OUTCOME_STYLES[result.outcome]
        table.add_row(
            result.source,
            result.target,
            f'[{style}]{result.outcome.value}[/{style}]',
            result.reason or result.migration_id or '',
        )

    console.print(table)
    console.print(
        f'\n[green]{summary.succeeded} succeeded[/green], '
        f'[blue]{summary.queued} queued[/blue], '
        f'[yellow]{summary.skipped} skipped[/yellow], '
        f'[red]{summary.failed} failed[/red]'
    )

    if summary.completed_at:
        duration = summary.completed_at - summary.started_at
        console.print(f'[blue]Migration Duration:[/blue] {duration}')


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
