"""Initial pipeline schema: jobs, markers, memos, CRM records, integrations.

Revision ID: 001_initial_pipeline
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSON

# revision identifiers, used by Alembic.
revision: str = "001_initial_pipeline"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _owner() -> sa.Column:
    return sa.Column("owner_id", UUID(as_uuid=True), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ── Jobs ──────────────────────────────────────────────────────────────
    op.create_table(
        "processing_jobs",
        _id(),
        _owner(),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_id", sa.String(300), nullable=True),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("current_step", sa.String(50), server_default=sa.text("'queued'"), nullable=False),
        sa.Column("progress", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("metadata", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("result", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_processing_jobs_owner_status", "processing_jobs", ["owner_id", "status"])
    op.create_index(
        "ix_processing_jobs_status_heartbeat", "processing_jobs", ["status", "heartbeat_at"]
    )

    op.create_table(
        "imported_transcripts",
        _id(),
        _owner(),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_id", sa.String(300), nullable=False),
        sa.Column("memo_id", UUID(as_uuid=True), nullable=False),
        sa.Column("imported_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "owner_id", "source", "source_id", name="uq_imported_transcript_owner_source"
        ),
    )

    # ── Memos and CRM ─────────────────────────────────────────────────────
    op.create_table(
        "memos",
        _id(),
        _owner(),
        sa.Column("company_id", UUID(as_uuid=True), nullable=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("source_id", sa.String(300), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("meeting_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("participants", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        sa.Column("template_id", sa.String(50), nullable=True),
        sa.Column("metadata", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("drive_file_id", sa.String(200), nullable=True),
        sa.Column("drive_url", sa.String(1000), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_memos_owner_source", "memos", ["owner_id", "source", "source_id"])

    op.create_table(
        "companies",
        _id(),
        _owner(),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("domain", sa.String(300), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("industry", sa.String(200), nullable=True),
        sa.Column("stage", sa.String(100), nullable=True),
        sa.Column("founders", JSON(), server_default=sa.text("'[]'::json"), nullable=False),
        _created_at(),
    )
    op.create_index("ix_companies_owner_name", "companies", ["owner_id", "name"])

    op.create_table(
        "contacts",
        _id(),
        _owner(),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("linkedin_url", sa.String(500), nullable=True),
        sa.Column("title", sa.String(300), nullable=True),
        sa.Column("company_name", sa.String(300), nullable=True),
        sa.Column("relationship_type", sa.String(50), nullable=True),
        sa.Column("notes", sa.Text(), server_default=sa.text("''"), nullable=False),
        sa.Column("last_met_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_contacts_owner_email", "contacts", ["owner_id", "email"])
    op.create_index("ix_contacts_owner_linkedin", "contacts", ["owner_id", "linkedin_url"])

    op.create_table(
        "contact_memos",
        _id(),
        _owner(),
        sa.Column("contact_id", UUID(as_uuid=True), nullable=False),
        sa.Column("memo_id", UUID(as_uuid=True), nullable=False),
        sa.Column("context", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("contact_id", "memo_id", name="uq_contact_memo"),
    )

    op.create_table(
        "tasks",
        _id(),
        _owner(),
        sa.Column("memo_id", UUID(as_uuid=True), nullable=True),
        sa.Column("company_id", UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("priority", sa.String(20), server_default=sa.text("'medium'"), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_tasks_owner_memo", "tasks", ["owner_id", "memo_id"])

    op.create_table(
        "reminders",
        _id(),
        _owner(),
        sa.Column("contact_id", UUID(as_uuid=True), nullable=True),
        sa.Column("company_id", UUID(as_uuid=True), nullable=True),
        sa.Column("memo_id", UUID(as_uuid=True), nullable=True),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("source_text", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("priority", sa.String(20), server_default=sa.text("'medium'"), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column("snoozed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_reminders_owner_status_due", "reminders", ["owner_id", "status", "due_date"]
    )

    # ── Integrations ──────────────────────────────────────────────────────
    op.create_table(
        "integrations",
        _id(),
        _owner(),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("credentials", JSON(), server_default=sa.text("'{}'::json"), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("owner_id", "provider", name="uq_integration_owner_provider"),
    )


def downgrade() -> None:
    op.drop_table("integrations")
    op.drop_index("ix_reminders_owner_status_due", table_name="reminders")
    op.drop_table("reminders")
    op.drop_index("ix_tasks_owner_memo", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("contact_memos")
    op.drop_index("ix_contacts_owner_linkedin", table_name="contacts")
    op.drop_index("ix_contacts_owner_email", table_name="contacts")
    op.drop_table("contacts")
    op.drop_index("ix_companies_owner_name", table_name="companies")
    op.drop_table("companies")
    op.drop_index("ix_memos_owner_source", table_name="memos")
    op.drop_table("memos")
    op.drop_table("imported_transcripts")
    op.drop_index("ix_processing_jobs_status_heartbeat", table_name="processing_jobs")
    op.drop_index("ix_processing_jobs_owner_status", table_name="processing_jobs")
    op.drop_table("processing_jobs")
