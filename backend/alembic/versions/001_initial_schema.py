"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# create_type=False prevents create_table from auto-creating these
import_entity_type_enum = postgresql.ENUM(
    "companies", "contacts", "activities",
    name="import_entity_type_enum",
    create_type=False,
)

import_status_enum = postgresql.ENUM(
    "queued", "validating", "validated", "processing",
    "completed", "completed_with_errors", "failed", "cancelled",
    name="import_status_enum",
    create_type=False,
)


def upgrade() -> None:
    # Create enums explicitly with IF NOT EXISTS for idempotency
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE import_entity_type_enum AS ENUM "
        "('companies','contacts','activities'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$;"
    ))
    op.execute(sa.text(
        "DO $$ BEGIN "
        "CREATE TYPE import_status_enum AS ENUM "
        "('queued','validating','validated','processing',"
        "'completed','completed_with_errors','failed','cancelled'); "
        "EXCEPTION WHEN duplicate_object THEN NULL; "
        "END $$;"
    ))

    op.create_table(
        "import_jobs",
        sa.Column("id", sa.UUID(), nullable=False, default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.UUID(), nullable=True),
        sa.Column("uploaded_by", sa.UUID(), nullable=True),
        sa.Column("filename", sa.String(255), nullable=False),
        sa.Column(
            "entity_type", import_entity_type_enum, nullable=False,
            server_default=sa.text("'companies'"),
        ),
        sa.Column("status", import_status_enum, nullable=False, server_default=sa.text("'queued'")),
        sa.Column("total_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("processed_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("error_records", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("errors", postgresql.JSON(), nullable=True),
        sa.Column("warnings", postgresql.JSON(), nullable=True),
        sa.Column("metadata", postgresql.JSON(), nullable=True),
        sa.Column("task_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_import_jobs_uploaded_by", "import_jobs", ["uploaded_by"])
    op.create_index("ix_import_jobs_created_at", "import_jobs", ["created_at"])
    op.create_index("idx_import_jobs_org_status", "import_jobs", ["organization_id", "status"])

    op.create_table(
        "companies",
        sa.Column("id", sa.UUID(), nullable=False, default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.UUID(), nullable=True),
        sa.Column("import_job_id", sa.UUID(), nullable=True),
        sa.Column("name_en", sa.String(255), nullable=False),
        sa.Column("name_th", sa.String(255), nullable=True),
        sa.Column("primary_registration_no", sa.String(50), nullable=True),
        sa.Column("registration_country_code", sa.String(8), nullable=True),
        sa.Column("address_line1", sa.String(255), nullable=True),
        sa.Column("address_line2", sa.String(255), nullable=True),
        sa.Column("postal_code", sa.String(20), nullable=True),
        sa.Column("primary_email", sa.String(255), nullable=True),
        sa.Column("primary_phone", sa.String(50), nullable=True),
        sa.Column("website_url", sa.String(500), nullable=True),
        sa.Column("linkedin_url", sa.String(500), nullable=True),
        sa.Column("business_description", sa.Text(), nullable=True),
        sa.Column("employee_count_estimate", sa.Integer(), nullable=True),
        sa.Column("company_size", sa.String(50), nullable=True),
        sa.Column("annual_revenue_estimate", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency_code", sa.String(8), nullable=True),
        sa.Column("is_shared_data", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("data_source", sa.String(50), nullable=False, server_default=sa.text("'import'")),
        sa.Column(
            "verification_status", sa.String(50), nullable=False,
            server_default=sa.text("'unverified'"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["import_job_id"], ["import_jobs.id"]),
    )
    op.create_index("ix_companies_organization_id", "companies", ["organization_id"])
    op.create_index("ix_companies_name_en", "companies", ["name_en"])

    op.create_table(
        "company_contacts",
        sa.Column("id", sa.UUID(), nullable=False, default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.UUID(), nullable=True),
        sa.Column("import_job_id", sa.UUID(), nullable=True),
        sa.Column("company_id", sa.UUID(), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("job_title", sa.String(255), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["import_job_id"], ["import_jobs.id"]),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
    )
    op.create_index("ix_company_contacts_organization_id", "company_contacts", ["organization_id"])
    op.create_index("ix_company_contacts_company_id", "company_contacts", ["company_id"])

    op.create_table(
        "company_activities",
        sa.Column("id", sa.UUID(), nullable=False, default=sa.text("gen_random_uuid()")),
        sa.Column("organization_id", sa.UUID(), nullable=True),
        sa.Column("import_job_id", sa.UUID(), nullable=True),
        sa.Column("company_id", sa.UUID(), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("activity_type", sa.String(50), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["import_job_id"], ["import_jobs.id"]),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"]),
    )
    op.create_index(
        "ix_company_activities_organization_id", "company_activities", ["organization_id"]
    )
    op.create_index("ix_company_activities_company_id", "company_activities", ["company_id"])


def downgrade() -> None:
    op.drop_table("company_activities")
    op.drop_table("company_contacts")
    op.drop_table("companies")
    op.drop_table("import_jobs")
    op.execute("DROP TYPE IF EXISTS import_status_enum")
    op.execute("DROP TYPE IF EXISTS import_entity_type_enum")
