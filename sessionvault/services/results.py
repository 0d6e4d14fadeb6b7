from __future__ import annotations

from dataclasses import dataclass

from sessionvault.core.errors import AuthError
from sessionvault.repositories.base import UserRecord


@dataclass(frozen=True)
class AuthFailure:
    error: AuthError
    cooldown_seconds: int | None = None


@dataclass(frozen=True)
class LoginSuccess:
    access_token: str
    refresh_token: str
    user: UserRecord


@dataclass(frozen=True)
class RefreshSuccess:
    access_token: str
    refresh_token: str
    user_id: int


@dataclass(frozen=True)
class LogoutSuccess:
    user_id: int


@dataclass(frozen=True)
class RegisterSuccess:
    user: UserRecord


@dataclass(frozen=True)
class VerifyEmailSuccess:
    user_id: int
    already_verified: bool
    verified: bool = True


@dataclass(frozen=True)
class EmailDispatched:
    """Generic outcome of resend/forgot-password; identical whether or not the account exists."""

    sent: bool = True


@dataclass(frozen=True)
class PasswordResetSuccess:
    user_id: int
    reset: bool = True


@dataclass(frozen=True)
class AccessGranted:
    user: UserRecord
