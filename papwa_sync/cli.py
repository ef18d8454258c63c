"""CLI tools for running and administering the sync engine."""

import asyncio

import click

from papwa_sync.context import build_context
from papwa_sync.core.structured_logging import configure_logging
from papwa_sync.db.enums import JobStatus, Provider
from papwa_sync.jobs.handlers.sync import run_sync
from papwa_sync.jobs.schedules import setup_schedules as register_all_schedules
from papwa_sync.services import job_service
from papwa_sync.services.sync_common import resolve_timezone
from papwa_sync.services.token_service import TokenManager

PROVIDER_CHOICE = click.Choice([provider.value for provider in Provider])


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="Root log level")
def cli(log_level: str):
    """papwa-sync CLI tools."""
    configure_logging(log_level.upper())


@cli.command()
def worker():
    """Run the background worker (all queues plus the scheduler)."""
    from papwa_sync.worker import main as worker_main

    worker_main()


@cli.command("setup-schedules")
def setup_schedules():
    """
    Reset the repeatable job registrations.

    Safe to run on every deploy: each key is removed before it is re-added.
    """
    ctx = build_context()
    try:
        with ctx.session() as db:
            schedules = register_all_schedules(db, tz=resolve_timezone(ctx.settings.TIMEZONE))
            for schedule in schedules:
                click.echo(f"✓ {schedule.key}: {schedule.cron} (next {schedule.next_run_at.isoformat()})")
    finally:
        asyncio.run(ctx.aclose())


@cli.command()
@click.argument("provider", type=PROVIDER_CHOICE)
def sync(provider: str):
    """Run one sync tick for PROVIDER now, in this process."""

    async def _run():
        ctx = build_context()
        try:
            with ctx.session() as db:
                return await run_sync(ctx, db, Provider(provider))
        finally:
            await ctx.aclose()

    outcome = asyncio.run(_run())
    for key, value in outcome.as_dict().items():
        click.echo(f"{key}: {value}")


@cli.command()
@click.argument("provider", type=PROVIDER_CHOICE)
def disconnect(provider: str):
    """Revoke and clear PROVIDER's credentials."""

    async def _run():
        ctx = build_context()
        try:
            with ctx.session() as db:
                await TokenManager(db, ctx.connectors).disconnect(Provider(provider))
        finally:
            await ctx.aclose()

    asyncio.run(_run())
    click.echo(f"✓ Disconnected {provider}")


@cli.command("connect-leads")
@click.option("--token", required=True, help="Lead tracker API token")
def connect_leads(token: str):
    """Verify and store the lead tracker API token."""

    async def _run() -> bool:
        ctx = build_context()
        try:
            with ctx.session() as db:
                return await TokenManager(db, ctx.connectors).connect_api_token(token)
        finally:
            await ctx.aclose()

    if asyncio.run(_run()):
        click.echo("✓ Lead tracker connected")
    else:
        raise click.ClickException("API token rejected by provider")


@cli.command("list-jobs")
@click.option("--status", type=click.Choice([s.value for s in JobStatus]), default=None)
@click.option("--limit", default=20, show_default=True)
def list_jobs(status: str | None, limit: int):
    """Show recent jobs."""
    ctx = build_context()
    try:
        with ctx.session() as db:
            jobs = job_service.list_jobs(
                db, status=JobStatus(status) if status else None, limit=limit
            )
            for job in jobs:
                click.echo(
                    f"{job.id} {job.queue}/{job.name} {job.status} "
                    f"attempts={job.attempts}/{job.max_attempts} run_at={job.run_at.isoformat()}"
                )
    finally:
        asyncio.run(ctx.aclose())


if __name__ == "__main__":
    cli()
