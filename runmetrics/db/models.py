"""
SQLAlchemy ORM models for the metrics database.

TaskRun maps the task_runs_v2 TimescaleDB hypertable the metric queries read.
Rows are versioned: every state change of a run appends a row with a higher
_version, and readers keep the latest version per run_id. Soft deletes set
_is_deleted = 1.

RuntimeEnvironment and OrgMember back the environment access check done by
the metrics route.

CHANGELOG:
- 2026-10-10: Add RuntimeEnvironment and OrgMember (STORY-107)
- 2026-10-06: Initial creation (STORY-101)

TODO:
- None
"""

import datetime

from sqlalchemy import BigInteger, DateTime, Double, SmallInteger, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""

    pass


class TaskRun(Base):
    """One version of a task run.

    Attributes:
        run_id: Identifier of the run.
        created_at: When the run was created (UTC), the bucketing column.
        version: Monotonic row version (column ``_version``).
        organization_id: Owning organization.
        project_id: Owning project.
        environment_id: Runtime environment the run executed in.
        task_identifier: Task the run belongs to.
        status: Run status, e.g. COMPLETED_SUCCESSFULLY.
        queue: Queue the run was enqueued on.
        usage_duration_ms: Billed execution time in milliseconds.
        cost_in_cents: Run cost in cents.
        is_deleted: Soft-delete marker (column ``_is_deleted``), 0 or 1.
    """

    __tablename__ = "task_runs_v2"

    run_id: Mapped[str] = mapped_column(Text, primary_key=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        primary_key=True,
        nullable=False,
    )
    version: Mapped[int] = mapped_column(
        "_version", BigInteger, primary_key=True, nullable=False
    )
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str] = mapped_column(Text, nullable=False)
    environment_id: Mapped[str] = mapped_column(Text, nullable=False)
    task_identifier: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    queue: Mapped[str] = mapped_column(Text, nullable=False)
    usage_duration_ms: Mapped[int] = mapped_column(
        BigInteger, nullable=False, server_default=text("0")
    )
    cost_in_cents: Mapped[float] = mapped_column(
        Double, nullable=False, server_default=text("0")
    )
    is_deleted: Mapped[int] = mapped_column(
        "_is_deleted", SmallInteger, nullable=False, server_default=text("0")
    )

    def __repr__(self) -> str:
        return (
            f"TaskRun(run_id={self.run_id!r}, version={self.version!r}, "
            f"status={self.status!r})"
        )


class RuntimeEnvironment(Base):
    """A deployable environment (dev, staging, prod) of a project."""

    __tablename__ = "runtime_environments"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    project_id: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"RuntimeEnvironment(id={self.id!r}, slug={self.slug!r})"


class OrgMember(Base):
    """Membership of a user in an organization."""

    __tablename__ = "org_members"

    organization_id: Mapped[str] = mapped_column(Text, primary_key=True)
    user_id: Mapped[str] = mapped_column(Text, primary_key=True)
