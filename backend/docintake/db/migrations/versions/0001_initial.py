"""Upload records, outbox log and extracted data

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "file_uploads",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("external_id", sa.Uuid(), nullable=False),
        sa.Column("object_key", sa.String(1000), nullable=False),
        sa.Column("bucket", sa.String(255), nullable=False),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("content_hash", sa.String(128), nullable=True),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("raw_text", sa.Text(), nullable=True),
        sa.Column("raw_text_size", sa.Integer(), nullable=True),
        sa.Column("is_canonical", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("canonical_reference", sa.Uuid(), sa.ForeignKey("file_uploads.id"), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("external_id"),
        sa.UniqueConstraint("object_key"),
        sa.CheckConstraint(
            "NOT (is_canonical AND status = 'deduplicated')",
            name="ck_file_uploads_dedup_not_canonical",
        ),
        sa.CheckConstraint(
            "status <> 'deduplicated' OR canonical_reference IS NOT NULL",
            name="ck_file_uploads_dedup_has_reference",
        ),
        sa.CheckConstraint(
            "canonical_reference IS NULL OR status IN ('deduplicated', 'deleted-by-user')",
            name="ck_file_uploads_reference_only_when_dedup",
        ),
    )
    op.create_index("ix_file_uploads_owner_status", "file_uploads", ["owner_id", "status"])
    op.create_index("ix_file_uploads_canonical_reference", "file_uploads", ["canonical_reference"])
    op.create_index(
        "uq_file_uploads_canonical_owner_hash",
        "file_uploads",
        ["owner_id", "content_hash"],
        unique=True,
        postgresql_where=sa.text("is_canonical"),
    )

    op.create_table(
        "outbox_entries",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("process_id", sa.Uuid(), nullable=False),
        sa.Column("sequence_status", sa.String(20), nullable=False),
        sa.Column(
            "upload_id",
            sa.Uuid(),
            sa.ForeignKey("file_uploads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("external_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("process_id", "sequence_status", name="uq_outbox_entries_process_status"),
    )
    op.create_index("ix_outbox_entries_upload_id", "outbox_entries", ["upload_id"])
    op.create_index("ix_outbox_entries_process_created", "outbox_entries", ["process_id", "created_at"])
    op.create_index("ix_outbox_entries_status_created", "outbox_entries", ["sequence_status", "created_at"])
    op.create_index(
        "uq_outbox_entries_one_terminal",
        "outbox_entries",
        ["process_id"],
        unique=True,
        postgresql_where=sa.text("sequence_status IN ('completed', 'failed', 'not-a-cv')"),
    )

    # The outbox is append-only
    op.execute(
        """
        CREATE FUNCTION outbox_entries_append_only() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'outbox_entries is append-only (% rejected)', TG_OP;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER outbox_entries_append_only
        BEFORE UPDATE OR DELETE ON outbox_entries
        FOR EACH ROW EXECUTE FUNCTION outbox_entries_append_only();
        """
    )

    op.create_table(
        "extracted_data",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "upload_id",
            sa.Uuid(),
            sa.ForeignKey("file_uploads.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("process_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("data", postgresql.JSONB(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("process_id"),
    )
    op.create_index("ix_extracted_data_upload_id", "extracted_data", ["upload_id"])
    op.create_index("ix_extracted_data_owner_id", "extracted_data", ["owner_id"])


def downgrade() -> None:
    op.drop_table("extracted_data")
    op.execute("DROP TRIGGER IF EXISTS outbox_entries_append_only ON outbox_entries")
    op.execute("DROP FUNCTION IF EXISTS outbox_entries_append_only()")
    op.drop_table("outbox_entries")
    op.drop_table("file_uploads")
