"""app exchange tokens for the native app sign-in flow

Revision ID: 002_app_exchange_tokens
Revises: 001_identity_schema
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "002_app_exchange_tokens"
down_revision = "001_identity_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if "app_exchange_tokens" not in inspector.get_table_names():
        op.create_table(
            "app_exchange_tokens",
            sa.Column("token_hash", sa.String(length=128), primary_key=True),
            sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("expires_at", sa.DateTime(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    inspector = sa.inspect(bind)
    existing = {idx["name"] for idx in inspector.get_indexes("app_exchange_tokens")}
    if "ix_app_exchange_tokens_user_id" not in existing:
        op.create_index("ix_app_exchange_tokens_user_id", "app_exchange_tokens", ["user_id"], unique=False)
    if "ix_app_exchange_tokens_expires_at" not in existing:
        op.create_index("ix_app_exchange_tokens_expires_at", "app_exchange_tokens", ["expires_at"], unique=False)


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "app_exchange_tokens" in inspector.get_table_names():
        op.drop_table("app_exchange_tokens")
