#!/usr/bin/env python3
"""
CLI for KPI Reconciliation.

Usage:
    python cli.py init-db
    python cli.py pending --json
    python cli.py approve <kpi-id> --email planner@example.com
    python cli.py reject <kpi-id> --reason "wrong quantity"
    python cli.py bulk approve --batch-size 25
    python cli.py serve --port 8000

Commands:
    init-db           Create the database tables
    pending           List KPIs awaiting approval
    rejected          List rejected KPIs
    approve           Approve a pending KPI
    reject            Reject a pending KPI
    restore           Restore a rejected KPI to pending
    approve-rejected  Restore and approve a rejected KPI
    recompute         Recompute a BOQ activity's planned/actual units
    bulk              Apply one transition to many KPIs
    serve             Start the API server
"""
import asyncio
import json
import logging

import click

from kpi_recon import __version__

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _container(ctx: click.Context):
    from kpi_recon.config import get_config
    from kpi_recon.container import ServiceContainer
    from kpi_recon.models import create_engine_from_config

    config = get_config(ctx.obj.get('config_path'))
    engine = create_engine_from_config(config, url=ctx.obj.get('database_url'))
    return ServiceContainer.from_engine(engine, config)


def _run(ctx: click.Context, work):
    """Run `work(container)` on a fresh event loop and dispose the engine."""
    async def main():
        container = _container(ctx)
        try:
            return await work(container)
        finally:
            await container.dispose()
    return asyncio.run(main())


def _identity(email, alt_email, user_id):
    from kpi_recon.domain.entities import SessionIdentity
    return SessionIdentity(email=email, alternate_email=alt_email, user_id=user_id)


def _echo_result(result) -> None:
    """Print an OperationResult and exit non-zero on failure."""
    if result.success:
        click.echo(click.style(f"OK: {result.message}", fg='green'))
    else:
        click.echo(click.style(f"{result.code}: {result.message}", fg='red'))
    for key, value in result.details.items():
        if key != 'aggregate' and value is not None:
            click.echo(f"  {key}: {value}")
    aggregate = result.details.get('aggregate')
    if aggregate:
        click.echo(
            f"  aggregate: planned={aggregate['planned_total']} actual={aggregate['actual_total']}"
            f" matched={aggregate['matched']}"
        )
    if not result.success:
        raise SystemExit(1)


def identity_options(func):
    func = click.option('--user-id', default=None, help='Acting user id')(func)
    func = click.option('--alt-email', default=None, help='Alternate session email')(func)
    func = click.option('--email', default=None, help='Acting user email')(func)
    return func


@click.group()
@click.version_option(version=__version__)
@click.option('--config', 'config_path', default=None, type=click.Path(exists=True),
              help='Path to kpi_recon_config.yaml')
@click.option('--database-url', default=None, help='Override database.url from config')
@click.pass_context
def cli(ctx, config_path, database_url):
    """KPI approval workflow and BOQ reconciliation CLI."""
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['database_url'] = database_url


@cli.command('init-db')
@click.pass_context
def init_db_command(ctx):
    """Create all tables that do not exist yet."""
    from kpi_recon.models import init_db

    async def work(container):
        await init_db(container.engine, container.tables)

    _run(ctx, work)
    click.echo(click.style('Database initialised', fg='green'))


def _print_records(records, output_json: bool, rejected: bool = False) -> None:
    if output_json:
        rows = [
            {k: (str(v) if v is not None and not isinstance(v, (str, int, bool)) else v)
             for k, v in r.to_dict().items()}
            for r in records
        ]
        click.echo(json.dumps(rows, indent=2))
        return
    click.echo(f"{len(records)} record(s)")
    for r in records:
        line = f"  {r.id}  {r.project_full_code:<14} {r.activity_name:<30} {r.quantity:>10} {r.unit}"
        if rejected:
            line += f"  [{r.rejected_by}: {r.rejection_reason}]"
        click.echo(line)


@cli.command()
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def pending(ctx, output_json):
    """List Actual KPIs that still need an approval decision."""
    records = _run(ctx, lambda c: c.approvals().fetch_pending())
    _print_records(records, output_json)


@cli.command()
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
@click.pass_context
def rejected(ctx, output_json):
    """List rejected KPIs, newest first."""
    records = _run(ctx, lambda c: c.approvals().fetch_rejected())
    _print_records(records, output_json, rejected=True)


@cli.command()
@click.argument('kpi_id')
@identity_options
@click.pass_context
def approve(ctx, kpi_id, email, alt_email, user_id):
    """Approve a pending KPI."""
    identity = _identity(email, alt_email, user_id)
    _echo_result(_run(ctx, lambda c: c.approvals().approve(kpi_id, identity)))


@cli.command()
@click.argument('kpi_id')
@click.option('--reason', default=None, help='Rejection reason')
@identity_options
@click.pass_context
def reject(ctx, kpi_id, reason, email, alt_email, user_id):
    """Move a pending KPI to the rejected store."""
    identity = _identity(email, alt_email, user_id)
    _echo_result(_run(ctx, lambda c: c.approvals().reject(kpi_id, reason, identity)))


@cli.command()
@click.argument('rejected_id')
@identity_options
@click.pass_context
def restore(ctx, rejected_id, email, alt_email, user_id):
    """Restore a rejected KPI to pending."""
    identity = _identity(email, alt_email, user_id)
    _echo_result(_run(ctx, lambda c: c.approvals().restore(rejected_id, identity)))


@cli.command('approve-rejected')
@click.argument('rejected_id')
@identity_options
@click.pass_context
def approve_rejected(ctx, rejected_id, email, alt_email, user_id):
    """Restore a rejected KPI and approve it."""
    identity = _identity(email, alt_email, user_id)
    _echo_result(_run(ctx, lambda c: c.approvals().approve_rejected(rejected_id, identity)))


@cli.command()
@click.argument('project_full_code')
@click.argument('activity_name')
@click.pass_context
def recompute(ctx, project_full_code, activity_name):
    """Recompute planned/actual units of one BOQ activity."""
    result = _run(ctx, lambda c: c.aggregator().recompute(project_full_code, activity_name))
    if not result.success:
        click.echo(click.style(f"Recompute failed: {result.message}", fg='red'))
        raise SystemExit(1)
    if not result.matched:
        click.echo(click.style(result.message, fg='yellow'))
    click.echo(f"Planned total: {result.planned_total}")
    click.echo(f"Actual total:  {result.actual_total}")
    click.echo(f"KPI rows:      {result.kpi_count}")


@cli.command()
@click.argument('operation', type=click.Choice([
    'approve', 'reject', 'restore', 'approve_rejected', 'delete_pending', 'delete_rejected',
]))
@click.option('--id', 'ids', multiple=True, help='Restrict to these ids (repeatable)')
@click.option('--reason', default=None, help='Rejection reason for bulk reject')
@click.option('--page-size', type=int, default=None, help='Rows fetched per page')
@click.option('--batch-size', type=int, default=None, help='Transitions per sub-batch')
@click.option('--include-approved', is_flag=True, help='Do not skip already approved rows')
@identity_options
@click.pass_context
def bulk(ctx, operation, ids, reason, page_size, batch_size, include_approved,
         email, alt_email, user_id):
    """Apply one transition to many KPIs with live progress."""
    from kpi_recon.domain.services import BulkOperation, BulkOptions, BulkScope

    def progress(p):
        click.echo(f"  processed {p.processed} (ok {p.succeeded}, failed {p.failed})")

    scope = BulkScope(ids=list(ids) or None, pending_only=not include_approved)
    options = BulkOptions(
        page_size=page_size,
        batch_size=batch_size,
        reason=reason,
        identity=_identity(email, alt_email, user_id),
        on_progress=progress,
    )
    click.echo(click.style(f'Bulk {operation}', fg='cyan', bold=True))
    result = _run(ctx, lambda c: c.bulk().bulk_apply(BulkOperation(operation), scope, options))

    click.echo(f"Succeeded: {result.succeeded}")
    click.echo(f"Failed:    {len(result.failed)}")
    for item_id in result.failed:
        click.echo(click.style(f"  {item_id}: {result.errors.get(item_id)}", fg='red'))
    if result.failed:
        raise SystemExit(1)


@cli.command()
@click.option('--port', type=int, default=8000, help='Server port')
@click.option('--host', default='0.0.0.0', help='Server host')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(port: int, host: str, reload: bool):
    """Start the API server.

    Runs the FastAPI application with uvicorn.

    Example:
        python cli.py serve --port 8000 --reload
    """
    import uvicorn

    click.echo(click.style('KPI Reconciliation - API Server', fg='cyan', bold=True))
    click.echo(f"Starting server at http://{host}:{port}")
    click.echo("Press CTRL+C to stop\n")

    uvicorn.run(
        "kpi_recon.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload
    )


if __name__ == '__main__':
    cli()
