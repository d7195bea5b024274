"""documents and documentable relations

Revision ID: 0001_documents
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_documents"
down_revision = None
branch_labels = None
depends_on = None

DOCUMENT_STATUSES = "'PENDING', 'APPROVED', 'REJECTED', 'SUPERSEDED'"
OWNER_TYPES = (
    "'PERSON', 'PERSON_IDENTIFICATION', 'PERSON_ADDRESS', 'PERSON_EMPLOYMENT', "
    "'COMPANY', 'COMPANY_ADDRESS', 'APPLICATION'"
)


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("owner_type", sa.String(length=50), nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("document_type", sa.String(length=50), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("storage_disk", sa.String(length=32), nullable=False, server_default="local"),
        sa.Column("mime_type", sa.String(length=100), nullable=True),
        sa.Column("file_size", sa.BigInteger(), nullable=True),
        sa.Column("checksum", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="PENDING"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
        sa.Column("superseded_by_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("previous_version_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("replaced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replacement_reason", sa.String(length=50), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=64), nullable=True),
        sa.Column("is_sensitive", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.Column("deleted_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["superseded_by_id"], ["documents.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["previous_version_id"], ["documents.id"], ondelete="SET NULL"),
        sa.CheckConstraint(f"status IN ({DOCUMENT_STATUSES})", name="ck_documents_status"),
        sa.CheckConstraint(f"owner_type IN ({OWNER_TYPES})", name="ck_documents_owner_type"),
        sa.CheckConstraint("version_number >= 1", name="ck_documents_version_positive"),
        sa.CheckConstraint(
            "is_active = false OR valid_to IS NULL",
            name="ck_documents_active_open_interval",
        ),
        sa.CheckConstraint(
            "status <> 'SUPERSEDED' OR (is_active = false AND valid_to IS NOT NULL)",
            name="ck_documents_superseded_closed",
        ),
        sa.CheckConstraint(
            "superseded_by_id IS NULL OR superseded_by_id <> id",
            name="ck_documents_no_self_supersede",
        ),
    )
    op.create_index("ix_documents_tenant_id", "documents", ["tenant_id"])
    op.create_index("ix_documents_superseded_by_id", "documents", ["superseded_by_id"])
    op.create_index("ix_documents_previous_version_id", "documents", ["previous_version_id"])
    op.create_index(
        "ix_documents_owner_type_active",
        "documents",
        ["tenant_id", "owner_type", "owner_id", "document_type", "is_active"],
    )
    op.create_index(
        "ix_documents_owner_type_validity",
        "documents",
        ["tenant_id", "owner_type", "owner_id", "document_type", "valid_from", "valid_to"],
    )
    # At most one active document per tenant, owner and type.
    op.create_index(
        "ux_documents_one_active",
        "documents",
        ["tenant_id", "owner_type", "owner_id", "document_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active = 1"),
    )

    op.create_table(
        "documentable_relations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("document_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("relatable_type", sa.String(length=50), nullable=False),
        sa.Column("relatable_id", sa.String(length=64), nullable=False),
        sa.Column("relation_context", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.Column("created_by_type", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["document_id"], ["documents.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "document_id",
            "relatable_type",
            "relatable_id",
            "relation_context",
            name="uq_documentable_relations_link",
        ),
        sa.CheckConstraint(
            "relation_context IN ('OWNERSHIP', 'USAGE', 'REFERENCE')",
            name="ck_documentable_relations_context",
        ),
    )
    op.create_index(
        "ix_documentable_relations_document_id", "documentable_relations", ["document_id"]
    )
    op.create_index(
        "ix_documentable_relations_relatable",
        "documentable_relations",
        ["tenant_id", "relatable_type", "relatable_id", "relation_context"],
    )


def downgrade() -> None:
    op.drop_index("ix_documentable_relations_relatable", table_name="documentable_relations")
    op.drop_index("ix_documentable_relations_document_id", table_name="documentable_relations")
    op.drop_table("documentable_relations")
    op.drop_index("ux_documents_one_active", table_name="documents")
    op.drop_index("ix_documents_owner_type_validity", table_name="documents")
    op.drop_index("ix_documents_owner_type_active", table_name="documents")
    op.drop_index("ix_documents_previous_version_id", table_name="documents")
    op.drop_index("ix_documents_superseded_by_id", table_name="documents")
    op.drop_index("ix_documents_tenant_id", table_name="documents")
    op.drop_table("documents")
