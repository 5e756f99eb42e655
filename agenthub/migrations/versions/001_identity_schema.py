"""identity schema: users, identities, api keys, audit logs

Revision ID: 001_identity_schema
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "001_identity_schema"
down_revision = None
branch_labels = None
depends_on = None


def _ensure_indexes(inspector, table: str, wanted: list[tuple[str, list[str]]]) -> None:
    existing = {idx["name"] for idx in inspector.get_indexes(table)}
    for name, columns in wanted:
        if name not in existing:
            op.create_index(name, table, columns, unique=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if "user_identities" not in tables:
        op.create_table(
            "user_identities",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("subject", sa.String(length=128), nullable=False),
            sa.Column("login", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("avatar_url", sa.String(length=1024), nullable=False, server_default=""),
            sa.Column("profile_url", sa.String(length=1024), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("provider", "subject", name="uq_user_identities_provider_subject"),
        )

    if "user_api_keys" not in tables:
        op.create_table(
            "user_api_keys",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("key_prefix", sa.String(length=16), nullable=False),
            sa.Column("key_salt", sa.String(length=64), nullable=False),
            sa.Column("key_hash", sa.String(length=128), nullable=False, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("last_used_at", sa.DateTime(), nullable=True),
            sa.Column("revoked_at", sa.DateTime(), nullable=True),
        )

    if "audit_logs" not in tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.String(length=32), primary_key=True),
            sa.Column("actor_type", sa.String(length=32), nullable=False),
            sa.Column("actor_id", sa.String(length=32), nullable=True),
            sa.Column("action", sa.String(length=128), nullable=False),
            sa.Column("ip", sa.String(length=64), nullable=True),
            sa.Column("user_agent", sa.String(length=512), nullable=True),
            sa.Column("path", sa.String(length=255), nullable=True),
            sa.Column("method", sa.String(length=16), nullable=True),
            sa.Column("data_json", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    # Indexes (idempotent-ish)
    inspector = sa.inspect(bind)
    _ensure_indexes(inspector, "user_identities", [("ix_user_identities_user_id", ["user_id"])])
    _ensure_indexes(
        inspector,
        "user_api_keys",
        [
            ("ix_user_api_keys_user_id", ["user_id"]),
            ("ix_user_api_keys_key_prefix", ["key_prefix"]),
        ],
    )
    _ensure_indexes(
        inspector,
        "audit_logs",
        [
            ("ix_audit_logs_created_at", ["created_at"]),
            ("ix_audit_logs_actor_id", ["actor_id"]),
            ("ix_audit_logs_action", ["action"]),
        ],
    )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = inspector.get_table_names()

    for table in ("audit_logs", "user_api_keys", "user_identities", "users"):
        if table in tables:
            op.drop_table(table)
