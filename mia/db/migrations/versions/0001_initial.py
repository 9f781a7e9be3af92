"""Initial schema: users, OAuth server state, platform connections.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _tz() -> sa.DateTime:
    return sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(48), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("picture", sa.String(2048)),
        sa.Column("password_hash", sa.String(255)),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", _tz(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("revoked_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_user_sessions_user_id", "user_sessions", ["user_id"])

    op.create_table(
        "oauth_clients",
        sa.Column("id", sa.String(256), primary_key=True),
        sa.Column("client_secret_hash", sa.String(255)),
        sa.Column("client_name", sa.String(255), nullable=False),
        sa.Column("client_type", sa.String(20), nullable=False),
        sa.Column("redirect_uris", sa.JSON(), nullable=False),
        sa.Column("allowed_scopes", sa.String(1024), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", _tz(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "authorization_requests",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "client_id", sa.String(256), sa.ForeignKey("oauth_clients.id"), nullable=False
        ),
        sa.Column("redirect_uri", sa.String(2048), nullable=False),
        sa.Column("scope", sa.String(1024), nullable=False),
        sa.Column("state", sa.String(1024)),
        sa.Column("nonce", sa.String(255)),
        sa.Column("code_challenge", sa.String(128), nullable=False),
        sa.Column("code_challenge_method", sa.String(10), nullable=False),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("consumed_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "authorization_codes",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column(
            "client_id", sa.String(256), sa.ForeignKey("oauth_clients.id"), nullable=False
        ),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("redirect_uri", sa.String(2048), nullable=False),
        sa.Column("scope", sa.String(1024), nullable=False),
        sa.Column("nonce", sa.String(255)),
        sa.Column("code_challenge", sa.String(128), nullable=False),
        sa.Column("code_challenge_method", sa.String(10), nullable=False),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("used_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "access_tokens",
        sa.Column("jti", sa.String(64), primary_key=True),
        sa.Column("client_id", sa.String(256), nullable=False),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("scope", sa.String(1024), nullable=False),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("revoked_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_access_tokens_user_id", "access_tokens", ["user_id"])

    op.create_table(
        "refresh_tokens",
        sa.Column("jti", sa.String(64), primary_key=True),
        sa.Column("parent_jti", sa.String(64)),
        sa.Column("client_id", sa.String(256), nullable=False),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("scope", sa.String(1024), nullable=False),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("revoked_at", _tz()),
        sa.Column("last_used_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])
    op.create_index("ix_refresh_tokens_parent_jti", "refresh_tokens", ["parent_jti"])

    op.create_table(
        "oauth_consents",
        sa.Column("id", sa.String(48), primary_key=True),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "client_id", sa.String(256), sa.ForeignKey("oauth_clients.id"), nullable=False
        ),
        sa.Column("scope", sa.String(1024), nullable=False),
        sa.Column("consented_at", _tz(), nullable=False),
        sa.Column("revoked_at", _tz()),
        sa.UniqueConstraint("user_id", "client_id"),
    )

    op.create_table(
        "platform_connections",
        sa.Column("id", sa.String(48), primary_key=True),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text()),
        sa.Column("token_type", sa.String(50), nullable=False),
        sa.Column("scope", sa.Text()),
        sa.Column("expires_at", _tz()),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("connected_at", _tz(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", _tz(), nullable=False, server_default=sa.func.now()),
        sa.Column("last_used_at", _tz()),
        sa.UniqueConstraint("user_id", "platform"),
    )
    op.create_index(
        "ix_platform_connections_user_id", "platform_connections", ["user_id"]
    )

    op.create_table(
        "oauth_states",
        sa.Column("state", sa.String(256), primary_key=True),
        sa.Column("platform", sa.String(20), nullable=False),
        sa.Column("user_id", sa.String(48), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("code_verifier", sa.String(256), nullable=False),
        sa.Column("redirect_after", sa.Text()),
        sa.Column("expires_at", _tz(), nullable=False),
        sa.Column("used_at", _tz()),
        sa.Column("created_at", _tz(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_oauth_states_expires_at", "oauth_states", ["expires_at"])


def downgrade() -> None:
    for table in (
        "oauth_states",
        "platform_connections",
        "oauth_consents",
        "refresh_tokens",
        "access_tokens",
        "authorization_codes",
        "authorization_requests",
        "oauth_clients",
        "user_sessions",
        "users",
    ):
        op.drop_table(table)
