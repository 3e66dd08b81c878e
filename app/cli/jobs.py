# app/cli/jobs.py
"""
Operator commands for the sync job engine.

    python -m app.cli.jobs enqueue acme feed-push --payload @items.json
    python -m app.cli.jobs stats --tenant acme
    python -m app.cli.jobs show <job-id>
    python -m app.cli.jobs reap --older-than 30
    python -m app.cli.jobs worker
"""
import asyncio
import json
from datetime import timedelta

import click

from app.core.exceptions import JobQueueError
from app.core.logging_config import configure_logging
from app.database import async_session
from app.schemas.job import JobRead
from app.services.job_events import get_job_history
from app.services.job_runtime import build_runtime


def _load_payload(value):
    if not value:
        return {}
    if value.startswith("@"):
        with open(value[1:], "r", encoding="utf-8") as f:
            value = f.read()
    try:
        payload = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"payload is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise click.BadParameter("payload must be a JSON object")
    return payload


def _echo_job(job):
    click.echo(JobRead.from_orm_model(job).model_dump_json(indent=2))


@click.group()
@click.option("--log-level", default="WARNING", show_default=True)
def cli(log_level):
    """Manage sync jobs"""
    configure_logging(log_level)


@cli.command()
@click.argument("tenant_id")
@click.argument("kind")
@click.option("--target", "target_key", default=None, help="Single record key (SKU, category id)")
@click.option("--payload", default=None, help="JSON object, or @path/to/file.json")
@click.option("--max-retries", type=int, default=None)
@click.option("--idempotent/--strict", default=True, show_default=True,
              help="Return the existing active job instead of failing on duplicates")
def enqueue(tenant_id, kind, target_key, payload, max_retries, idempotent):
    """Queue a sync job"""
    payload = _load_payload(payload)

    async def _enqueue():
        runtime = build_runtime()
        try:
            if idempotent:
                job, created = await runtime.queue.enqueue_idempotent(tenant_id, kind, target_key, payload, max_retries)
            else:
                job = await runtime.queue.enqueue(tenant_id, kind, target_key, payload, max_retries)
                created = True
        finally:
            await runtime.close()
        click.echo(f"{'Queued' if created else 'Already active'}: {job.id}")
        _echo_job(job)

    try:
        asyncio.run(_enqueue())
    except JobQueueError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.option("--tenant", "tenant_id", default=None)
def stats(tenant_id):
    """Show job counts, success rate and average duration"""

    async def _stats():
        runtime = build_runtime()
        result = await runtime.queue.get_job_stats(tenant_id)
        click.echo(result.model_dump_json(indent=2))

    asyncio.run(_stats())


@cli.command(name="list")
@click.option("--tenant", "tenant_id", default=None)
@click.option("--status", type=click.Choice(["queued", "processing", "success", "failed"]), default=None)
@click.option("--kind", default=None)
@click.option("--limit", type=int, default=20, show_default=True)
def list_jobs(tenant_id, status, kind, limit):
    """List recent jobs"""

    async def _list():
        runtime = build_runtime()
        jobs = await runtime.queue.list_jobs(tenant_id=tenant_id, status=status, kind=kind, limit=limit)
        if not jobs:
            click.echo("No jobs found")
            return
        for job in jobs:
            click.echo(
                f"{job.id}  {job.tenant_id:<16} {job.kind:<16} {job.status:<10} "
                f"retries={job.retry_count}/{job.max_retries}  {job.created_at:%Y-%m-%d %H:%M:%S}"
            )

    asyncio.run(_list())


@cli.command()
@click.argument("job_id")
def show(job_id):
    """Show a job and its transition history"""

    async def _show():
        runtime = build_runtime()
        job = await runtime.queue.get_job(job_id)
        if job is None:
            raise click.ClickException(f"Job {job_id} not found")
        _echo_job(job)
        async with async_session() as db:
            history = await get_job_history(db, job_id)
        click.echo("History:")
        for event in history:
            click.echo(f"  {event.created_at:%Y-%m-%d %H:%M:%S}  {event.from_status or '-':>10} -> {event.to_status:<10} {event.detail or ''}")

    asyncio.run(_show())


@cli.command()
@click.option("--older-than", "older_than", type=int, default=None,
              help="Minutes a job may stay processing (default JOB_STALE_AFTER_MINUTES)")
def reap(older_than):
    """Requeue or fail jobs abandoned in processing"""

    async def _reap():
        runtime = build_runtime()
        timeout = timedelta(minutes=older_than) if older_than else None
        count = await runtime.queue.reap_stale(timeout)
        click.echo(f"Reaped {count} job(s)")

    asyncio.run(_reap())


@cli.command()
def worker():
    """Run a sync worker until interrupted"""
    from app.worker import main
    asyncio.run(main())


if __name__ == "__main__":
    cli()
