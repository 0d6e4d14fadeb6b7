"""create tokens table

Revision ID: 8ed37e2dc3d2
Revises: 228009274123
Create Date: 2026-10-18 09:31:05.620913

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '8ed37e2dc3d2'
down_revision: Union[str, Sequence[str], None] = '228009274123'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TOKEN_TYPES = ("refresh", "email_verification", "password_reset")
INDEXES = (
    ("ix_tokens_user_id", ["user_id"], False),
    ("ix_tokens_token_hash", ["token_hash"], True),
    ("ix_tokens_session_id", ["session_id"], False),
    ("ix_tokens_expires_at", ["expires_at"], False),
)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "tokens" in inspector.get_table_names():
        return

    if bind.dialect.name == "postgresql":
        token_type_enum = postgresql.ENUM(*TOKEN_TYPES, name="tokentype", create_type=False)
        token_type_enum.create(bind, checkfirst=True)
    else:
        token_type_enum = sa.Enum(*TOKEN_TYPES, name="tokentype")

    op.create_table(
        "tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", token_type_enum, nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=True),
        sa.Column("session_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for name, columns, unique in INDEXES:
        op.create_index(name, "tokens", columns, unique=unique)


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if "tokens" in inspector.get_table_names():
        index_names = {idx["name"] for idx in inspector.get_indexes("tokens")}
        for name, _columns, _unique in reversed(INDEXES):
            if name in index_names:
                op.drop_index(name, table_name="tokens")
        op.drop_table("tokens")

    if bind.dialect.name == "postgresql":
        postgresql.ENUM(name="tokentype").drop(bind, checkfirst=True)
