from datetime import datetime
from enum import Enum

from sqlmodel import Field

from sessionvault.models.base import BaseTable


class TokenType(str, Enum):
    refresh = "refresh"
    email_verification = "email_verification"
    password_reset = "password_reset"


class Token(BaseTable, table=True):
    __tablename__: str = "tokens"  # type: ignore[assignment]

    user_id: int = Field(nullable=False, foreign_key="users.id", index=True)
    type: TokenType = Field(nullable=False)
    token_hash: str = Field(nullable=False, unique=True, index=True, max_length=64)
    # Refresh tokens only: every rotation of one login shares session_id and session_expires_at.
    session_id: str | None = Field(default=None, index=True, max_length=64)
    session_expires_at: datetime | None = Field(default=None)
    expires_at: datetime = Field(nullable=False, index=True)
    revoked_at: datetime | None = Field(default=None)
