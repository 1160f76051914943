"""
docqueue CLI commands

This module provides the command-line interface for running and
administering the background job processor.
"""

import asyncio
import json
from typing import Any, Awaitable, Callable

import click

from docqueue.admin import ProcessorAdmin
from docqueue.config import QueueConfig, setup_logging
from docqueue.db.connection import Database
from docqueue.exceptions import DocQueueError
from docqueue.jobs.envelope import JobKind
from docqueue.runtime import Runtime, build_runtime

KIND_CHOICE = click.Choice([kind.value for kind in JobKind])


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _run_admin(ctx: click.Context, action: Callable[[ProcessorAdmin], Awaitable[Any]]) -> Any:
    """Build a runtime, run one admin coroutine against it and close it"""
    try:
        runtime: Runtime = build_runtime(ctx.obj['config'])
    except (DocQueueError, RuntimeError) as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()

    async def main():
        try:
            return await action(ProcessorAdmin(runtime))
        finally:
            await runtime.close()

    try:
        return asyncio.run(main())
    except DocQueueError as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()


@click.group()
@click.option('--config', 'config_path', type=click.Path(exists=True), help='Path to configuration file')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              help='Logging level')
@click.pass_context
def cli(ctx, config_path, log_level):
    """docqueue background job processor"""
    overrides = {'logging': {'level': log_level}} if log_level else None
    try:
        config = QueueConfig(overrides=overrides, config_file=config_path)
    except DocQueueError as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()
    setup_logging(config)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command('init-db')
@click.pass_context
def init_db(ctx):
    """Create the system-of-record tables"""
    try:
        db = Database(ctx.obj['config'])
        db.create_tables()
        db.close()
    except RuntimeError as e:
        click.echo(f'Error: {e}', err=True)
        raise click.Abort()
    click.echo('Database tables created')


@cli.command()
@click.option('--once', is_flag=True, help='Run a single tick and exit')
@click.pass_context
def run(ctx, once):
    """Run the dispatcher until interrupted"""

    async def action(admin: ProcessorAdmin):
        dispatcher = admin.dispatcher
        if not once:
            await dispatcher.run()
            return None
        if dispatcher.config.sync_pending_on_start:
            await dispatcher.sync_pending_jobs()
        return await dispatcher.tick()

    report = _run_admin(ctx, action)
    if report is not None:
        click.echo(
            f'Tick finished: fetched {sum(report.fetched.values())}, '
            f'succeeded {report.succeeded}, failed {report.failed}'
        )
        for kind, error in report.store_errors.items():
            click.echo(f'  {kind}: store error: {error}', err=True)
        for kind in report.missing_handlers:
            click.echo(f'  {kind}: no handler registered', err=True)


@cli.command()
@click.pass_context
def status(ctx):
    """Show queue stats, metrics, health and record counts"""
    _echo_json(_run_admin(ctx, lambda admin: admin.status()))


@cli.command()
@click.pass_context
def health(ctx):
    """Show the health verdict; exits 1 unless healthy"""
    report = _run_admin(ctx, lambda admin: admin.runtime.dispatcher.health_check())
    _echo_json(report.to_dict())
    if not report.healthy:
        ctx.exit(1)


@cli.command()
@click.argument('kind', type=KIND_CHOICE)
@click.option('--payload', required=True, help='JSON payload for the job')
@click.option('--priority', type=int, default=5, help='Priority, higher runs first')
@click.option('--persist', is_flag=True, help='Also create a system-of-record row')
@click.pass_context
def enqueue(ctx, kind, payload, priority, persist):
    """Enqueue a single job"""
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        click.echo(f'Error: invalid JSON payload: {e}', err=True)
        raise click.Abort()

    async def action(admin: ProcessorAdmin):
        try:
            return await admin.enqueue(kind, data, priority=priority, persist=persist)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='--payload')

    job_id = _run_admin(ctx, action)
    click.echo(f'Enqueued {kind} job {job_id}')


@cli.command('clear-queue')
@click.argument('kind', type=KIND_CHOICE)
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def clear_queue(ctx, kind, yes):
    """Delete all queued, delayed and failed jobs of a kind"""
    if not yes and not click.confirm(f'Clear every {kind} job from the queue?'):
        return
    result = _run_admin(ctx, lambda admin: admin.clear_queue(kind))
    click.echo(result['message'])


@cli.command('retry-failed')
@click.argument('kind', type=KIND_CHOICE)
@click.pass_context
def retry_failed(ctx, kind):
    """Re-enqueue permanently failed jobs of a kind"""
    result = _run_admin(ctx, lambda admin: admin.retry_failed(kind))
    click.echo(f"Re-enqueued {result['retried']} failed {kind} jobs")


@cli.command('list-failed')
@click.argument('kind', type=KIND_CHOICE)
@click.option('--limit', type=int, default=20, help='Maximum entries shown')
@click.pass_context
def list_failed(ctx, kind, limit):
    """Show permanently failed jobs of a kind"""
    _echo_json(_run_admin(ctx, lambda admin: admin.list_failed(kind, limit=limit)))


@cli.command('sync-pending')
@click.option('--limit', type=int, help='Maximum rows per kind')
@click.pass_context
def sync_pending(ctx, limit):
    """Enqueue pending system-of-record jobs"""
    result = _run_admin(ctx, lambda admin: admin.sync_pending(limit))
    click.echo(f"Submitted {result['total']} pending jobs: {result['submitted']}")


if __name__ == '__main__':
    cli()
