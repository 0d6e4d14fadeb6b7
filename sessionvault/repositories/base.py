from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sessionvault.models.base import as_utc
from sessionvault.models.token import Token, TokenType
from sessionvault.models.user import User


def _as_utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    password_hash: str
    active: bool
    email_verified_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def can_authenticate(self) -> bool:
        return self.active and self.email_verified_at is not None

    @classmethod
    def from_row(cls, row: User) -> UserRecord:
        if row.id is None:
            raise ValueError("User row has no id")
        return cls(
            id=row.id,
            email=row.email,
            password_hash=row.password_hash,
            active=row.active,
            email_verified_at=_as_utc_or_none(row.email_verified_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


@dataclass(frozen=True)
class TokenRecord:
    id: int
    user_id: int
    type: TokenType
    token_hash: str
    session_id: str | None
    session_expires_at: datetime | None
    expires_at: datetime
    revoked_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Token) -> TokenRecord:
        if row.id is None:
            raise ValueError("Token row has no id")
        return cls(
            id=row.id,
            user_id=row.user_id,
            type=TokenType(row.type),
            token_hash=row.token_hash,
            session_id=row.session_id,
            session_expires_at=_as_utc_or_none(row.session_expires_at),
            expires_at=as_utc(row.expires_at),
            revoked_at=_as_utc_or_none(row.revoked_at),
            created_at=as_utc(row.created_at),
            updated_at=as_utc(row.updated_at),
        )


@dataclass(frozen=True)
class NewToken:
    user_id: int
    type: TokenType
    token_hash: str
    expires_at: datetime
    created_at: datetime
    session_id: str | None = None
    session_expires_at: datetime | None = None


class CredentialStore(Protocol):
    def find_user_by_email(self, normalized_email: str) -> UserRecord | None: ...

    def find_user_by_id(self, user_id: int) -> UserRecord | None: ...

    def create_user(self, email: str, password_hash: str) -> UserRecord: ...

    def set_password_hash(self, user_id: int, password_hash: str) -> None: ...

    def set_email_verified(self, user_id: int, verified_at: datetime) -> int: ...


class TokenStore(Protocol):
    def find_by_hash(
        self, token_hash: str, token_type: TokenType = TokenType.refresh
    ) -> TokenRecord | None: ...

    def find_latest_by_user_and_type(
        self, user_id: int, token_type: TokenType
    ) -> TokenRecord | None: ...

    def create(self, token: NewToken) -> TokenRecord: ...

    def delete_by_id(self, token_id: int) -> int: ...

    def delete_by_session_id(self, session_id: str) -> int: ...

    def delete_by_user_and_type(self, user_id: int, token_type: TokenType) -> int: ...

    def mark_revoked(self, token_id: int, revoked_at: datetime) -> int: ...

    def delete_expired(self, now: datetime) -> int: ...
