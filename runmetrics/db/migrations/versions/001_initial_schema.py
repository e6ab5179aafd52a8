"""
Initial schema: task_runs_v2 hypertable plus environment membership tables.

Enables the TimescaleDB and TimescaleDB Toolkit extensions (the latter
provides approx_count_distinct for the ``distinct`` rollup), creates
runtime_environments, org_members and the versioned task_runs_v2 table, then
converts task_runs_v2 into a hypertable on created_at.

Revision ID: 001
Revises: None
Create Date: 2026-10-11

CHANGELOG:
- 2026-10-19: Add run_id, _version index for newest-version lookups (STORY-112)
- 2026-10-11: Initial creation (STORY-108)

TODO:
- None
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create extensions, tables, tenant index and the hypertable."""
    op.execute("CREATE EXTENSION IF NOT EXISTS timescaledb")
    op.execute("CREATE EXTENSION IF NOT EXISTS timescaledb_toolkit")

    op.create_table(
        "runtime_environments",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("project_id", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
    )

    op.create_table(
        "org_members",
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("organization_id", "user_id"),
    )

    op.create_table(
        "task_runs_v2",
        sa.Column("run_id", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("_version", sa.BigInteger(), nullable=False),
        sa.Column("organization_id", sa.Text(), nullable=False),
        sa.Column("project_id", sa.Text(), nullable=False),
        sa.Column("environment_id", sa.Text(), nullable=False),
        sa.Column("task_identifier", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("queue", sa.Text(), nullable=False),
        sa.Column(
            "usage_duration_ms",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "cost_in_cents",
            sa.Double(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "_is_deleted",
            sa.SmallInteger(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.PrimaryKeyConstraint("run_id", "created_at", "_version"),
    )

    # Metric queries always filter on the tenant scope and a time range.
    op.create_index(
        "ix_task_runs_v2_tenant_created_at",
        "task_runs_v2",
        ["organization_id", "project_id", "environment_id", "created_at"],
    )

    # Newest-version lookups search by run id and version.
    op.create_index(
        "ix_task_runs_v2_run_version",
        "task_runs_v2",
        ["run_id", "_version"],
    )

    op.execute(
        "SELECT create_hypertable("
        "'task_runs_v2', 'created_at', "
        "chunk_time_interval => INTERVAL '1 day', "
        "if_not_exists => TRUE"
        ")"
    )


def downgrade() -> None:
    """Drop all tables. Extensions are left installed."""
    op.drop_index("ix_task_runs_v2_run_version", table_name="task_runs_v2")
    op.drop_index("ix_task_runs_v2_tenant_created_at", table_name="task_runs_v2")
    op.drop_table("task_runs_v2")
    op.drop_table("org_members")
    op.drop_table("runtime_environments")
