"""Baseline migration - integration state, records, jobs and schedules

Revision ID: 0001_baseline
Revises: 
Create Date: 2026-10-19

Creates every table the sync engine and the job scheduler use.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create integration, record and job tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Integration state (one row per provider)
    # ==========================================================================
    op.execute('''
        CREATE TABLE integration_state (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            provider VARCHAR(30) UNIQUE NOT NULL,
            access_token TEXT,
            refresh_token TEXT,
            token_expires_at TIMESTAMPTZ,
            sync_cursor TEXT,
            config JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT false,
            last_sync_at TIMESTAMPTZ,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Tasks
    # ==========================================================================
    op.execute('''
        CREATE TABLE tasks (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(500) NOT NULL,
            description TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'inbox',
            priority VARCHAR(10) NOT NULL DEFAULT 'medium',
            category VARCHAR(20) NOT NULL DEFAULT 'other',
            estimated_minutes INTEGER,
            deadline TIMESTAMPTZ,
            location TEXT,
            contact_name VARCHAR(255),
            contact_phone VARCHAR(50),
            external_id VARCHAR(255),
            external_source VARCHAR(30),
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            completed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_tasks_external UNIQUE (external_id, external_source)
        )
    ''')
    op.execute('CREATE INDEX idx_tasks_status ON tasks(status)')

    # ==========================================================================
    # Calendar events
    # ==========================================================================
    op.execute('''
        CREATE TABLE calendar_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            title VARCHAR(500) NOT NULL,
            description TEXT,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            location TEXT,
            task_id UUID REFERENCES tasks(id) ON DELETE SET NULL,
            source VARCHAR(20) NOT NULL,
            google_event_id VARCHAR(255),
            external_id VARCHAR(255),
            is_blocker BOOLEAN NOT NULL DEFAULT false,
            color VARCHAR(20),
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_calendar_events_google UNIQUE (google_event_id),
            CONSTRAINT uq_calendar_events_external UNIQUE (source, external_id)
        )
    ''')
    op.execute('CREATE INDEX idx_calendar_events_start ON calendar_events(start_time)')

    # ==========================================================================
    # Jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            queue VARCHAR(30) NOT NULL,
            name VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 1,
            backoff_type VARCHAR(20) NOT NULL DEFAULT 'standard',
            backoff_delay_ms INTEGER NOT NULL DEFAULT 0,
            last_error TEXT,
            schedule_key VARCHAR(100),
            idempotency_key VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ
        )
    ''')
    op.execute('CREATE INDEX idx_jobs_pending ON jobs(queue, status, run_at)')
    op.execute('''
        CREATE UNIQUE INDEX uq_job_idempotency ON jobs(idempotency_key)
        WHERE idempotency_key IS NOT NULL
    ''')

    # ==========================================================================
    # Repeatable job schedules
    # ==========================================================================
    op.execute('''
        CREATE TABLE job_schedules (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            key VARCHAR(100) UNIQUE NOT NULL,
            cron VARCHAR(100) NOT NULL,
            queue VARCHAR(30) NOT NULL,
            job_name VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}'::jsonb,
            next_run_at TIMESTAMPTZ NOT NULL,
            last_run_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')


def downgrade() -> None:
    """Drop all tables."""
    op.execute('DROP TABLE IF EXISTS job_schedules')
    op.execute('DROP INDEX IF EXISTS uq_job_idempotency')
    op.execute('DROP INDEX IF EXISTS idx_jobs_pending')
    op.execute('DROP TABLE IF EXISTS jobs')
    op.execute('DROP INDEX IF EXISTS idx_calendar_events_start')
    op.execute('DROP TABLE IF EXISTS calendar_events')
    op.execute('DROP INDEX IF EXISTS idx_tasks_status')
    op.execute('DROP TABLE IF EXISTS tasks')
    op.execute('DROP TABLE IF EXISTS integration_state')
