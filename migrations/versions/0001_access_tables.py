"""access tables

purchase_records, access_credentials and the audit/security/error logs.
The unique indexes on purchase_records.payment_reference and
access_credentials.email are what record_purchase relies on.

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "0001_access_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "access_credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("code_hash", sa.String(), nullable=False),
        sa.Column("code_ciphertext", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("failed_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_access_credentials_email", "access_credentials", ["email"], unique=True)
    op.create_index("ix_access_credentials_expires_at", "access_credentials", ["expires_at"])

    op.create_table(
        "purchase_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_reference", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("credential_id", sa.Integer(), sa.ForeignKey("access_credentials.id"), nullable=True),
        sa.Column("payment_intent", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_purchase_records_payment_reference", "purchase_records", ["payment_reference"], unique=True)
    op.create_index("ix_purchase_records_email", "purchase_records", ["email"])
    op.create_index("ix_purchase_records_status", "purchase_records", ["status"])
    op.create_index("ix_purchase_records_credential_id", "purchase_records", ["credential_id"])

    for table in ("audit_logs", "security_logs"):
        columns = [
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("event", sa.String(), nullable=False),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("ip", sa.String(), nullable=True),
        ]
        if table == "security_logs":
            columns.append(sa.Column("endpoint", sa.String(), nullable=True))
        columns += [
            sa.Column("detail", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        ]
        op.create_table(table, *columns)
        op.create_index(f"ix_{table}_event", table, ["event"])
        op.create_index(f"ix_{table}_email", table, ["email"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("endpoint", sa.String(), nullable=True),
        sa.Column("method", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("stack_trace", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("error_logs")
    for table in ("security_logs", "audit_logs"):
        op.drop_index(f"ix_{table}_email", table_name=table)
        op.drop_index(f"ix_{table}_event", table_name=table)
        op.drop_table(table)
    op.drop_table("purchase_records")
    op.drop_table("access_credentials")
