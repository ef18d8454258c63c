"""CLI commands against the test database."""

import dataclasses

import pytest
from click.testing import CliRunner

from papwa_sync.cli import cli
from papwa_sync.context import AppContext, build_context
from papwa_sync.db.enums import JobName, Provider, QueueName
from papwa_sync.services import integration_service, job_service, schedule_service
from tests.conftest import NOW


class _SharedContext(AppContext):
    """Context whose engine outlives the command (the test still needs it)."""

    async def aclose(self) -> None:
        return None


@pytest.fixture
def cli_context(monkeypatch, settings, db_engine, connectors):
    ctx = build_context(settings, engine=db_engine, connectors=connectors)
    shared = _SharedContext(**{f.name: getattr(ctx, f.name) for f in dataclasses.fields(ctx)})
    monkeypatch.setattr("papwa_sync.cli.build_context", lambda: shared)
    monkeypatch.setattr("papwa_sync.cli.configure_logging", lambda level: None)
    return shared


def test_setup_schedules_command(cli_context, db):
    runner = CliRunner()

    first = runner.invoke(cli, ["setup-schedules"])
    second = runner.invoke(cli, ["setup-schedules"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert first.output.count("✓") == 6
    assert len(schedule_service.list_schedules(db)) == 6


def test_list_jobs_command(cli_context, db):
    job = job_service.enqueue(db, QueueName.SYNC, JobName.CRM_SYNC, now=NOW)

    result = CliRunner().invoke(cli, ["list-jobs", "--status", "pending"])

    assert result.exit_code == 0, result.output
    assert str(job.id) in result.output
    assert "sync/crm_sync" in result.output


def test_connect_leads_command(cli_context, db):
    rejected = CliRunner().invoke(cli, ["connect-leads", "--token", "bad-token"])
    accepted = CliRunner().invoke(cli, ["connect-leads", "--token", "good-token"])

    assert rejected.exit_code == 1
    assert "rejected" in rejected.output
    assert accepted.exit_code == 0, accepted.output
    assert integration_service.is_active(db, Provider.LEADS) is True


def test_sync_command_reports_outcome(cli_context):
    result = CliRunner().invoke(cli, ["sync", "crm"])

    assert result.exit_code == 0, result.output
    assert "status: skipped" in result.output


def test_sync_command_rejects_unknown_provider(cli_context):
    result = CliRunner().invoke(cli, ["sync", "dropbox"])
    assert result.exit_code == 2
