from __future__ import annotations

import math
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from sessionvault.core.config import Settings, settings
from sessionvault.core.errors import AuthError, ConfigurationError
from sessionvault.core.logging import AuditLog, StructlogAuditLog, get_logger
from sessionvault.core.rate_limiter import SlidingWindowRateLimiter, build_key, normalize_email
from sessionvault.core.security import PasslibPasswordHasher, PasswordHasher, TokenCodec
from sessionvault.models.base import as_utc, utcnow
from sessionvault.models.token import TokenType
from sessionvault.repositories.base import CredentialStore, NewToken, TokenRecord, TokenStore, UserRecord
from sessionvault.services.notifier import Notifier
from sessionvault.services.results import (
    AccessGranted,
    AuthFailure,
    EmailDispatched,
    LoginSuccess,
    LogoutSuccess,
    PasswordResetSuccess,
    RefreshSuccess,
    RegisterSuccess,
    VerifyEmailSuccess,
)

logger = get_logger(__name__)

REFRESH_REUSE_DETECTED = "REFRESH_REUSE_DETECTED"
LOGOUT_TOKEN_NOT_FOUND = "LOGOUT_TOKEN_NOT_FOUND"


@dataclass(frozen=True)
class AuthPolicy:
    refresh_token_ttl: timedelta = timedelta(days=30)
    session_ttl: timedelta = timedelta(days=60)
    email_verification_ttl: timedelta = timedelta(minutes=15)
    password_reset_ttl: timedelta = timedelta(minutes=15)
    resend_cooldown: timedelta = timedelta(seconds=60)

    def __post_init__(self) -> None:
        if self.session_ttl < self.refresh_token_ttl:
            raise ConfigurationError("SESSION_TTL_DAYS must not be shorter than REFRESH_TOKEN_DAYS")

    @classmethod
    def from_settings(cls, config: Settings = settings) -> AuthPolicy:
        return cls(
            refresh_token_ttl=timedelta(days=config.REFRESH_TOKEN_DAYS),
            session_ttl=timedelta(days=config.SESSION_TTL_DAYS),
            email_verification_ttl=timedelta(minutes=config.EMAIL_VERIFICATION_TTL_MINUTES),
            password_reset_ttl=timedelta(minutes=config.PASSWORD_RESET_TTL_MINUTES),
            resend_cooldown=timedelta(seconds=config.EMAIL_VERIFICATION_RESEND_COOLDOWN_SECONDS),
        )


class AuthManager:
    """
    Login, refresh-token rotation, logout and one-time-token flows.

    Expected failures come back as ``AuthFailure`` values. Persistence errors
    propagate to the caller. Refresh tokens rotate on every use; presenting a
    token that was already rotated away tears down its whole session.
    """

    def __init__(
        self,
        *,
        credentials: CredentialStore,
        tokens: TokenStore,
        codec: TokenCodec,
        notifier: Notifier,
        policy: AuthPolicy | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        audit: AuditLog | None = None,
        password_hasher: PasswordHasher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.credentials = credentials
        self.tokens = tokens
        self.codec = codec
        self.notifier = notifier
        self.policy = policy or AuthPolicy()
        self.rate_limiter = rate_limiter
        self.audit = audit or StructlogAuditLog()
        self.password_hasher = password_hasher or PasslibPasswordHasher()
        self._clock = clock

    def _now(self) -> datetime:
        return as_utc(self._clock())

    # -- login -------------------------------------------------------------

    def login(
        self, email: str, password: str, *, client_ip: str | None = None
    ) -> LoginSuccess | AuthFailure:
        key = build_key("login", client_ip, email)
        if self.rate_limiter is not None and self.rate_limiter.is_limited(key):
            return AuthFailure(AuthError.too_many_requests)

        result = self._login(email, password)

        if self.rate_limiter is not None:
            if isinstance(result, LoginSuccess):
                self.rate_limiter.reset(key)
            elif result.error == AuthError.invalid_credentials:
                self.rate_limiter.register_failure(key)
        return result

    def _login(self, email: str, password: str) -> LoginSuccess | AuthFailure:
        invalid = AuthFailure(AuthError.invalid_credentials)
        if not password:
            return invalid

        normalized_email = normalize_email(email)
        if normalized_email is None:
            return invalid

        user = self.credentials.find_user_by_email(normalized_email)
        if user is None:
            self.password_hasher.dummy_verify(password)
            return invalid
        if not self.password_hasher.verify(password, user.password_hash) or not user.active:
            return invalid
        if user.email_verified_at is None:
            return AuthFailure(AuthError.email_not_verified)

        now = self._now()
        session_id = str(uuid.uuid4())
        access_token = self.codec.generate_access_token(user.id)
        refresh_token = self.codec.generate_refresh_token(user.id, session_id=session_id)
        self.tokens.create(
            NewToken(
                user_id=user.id,
                type=TokenType.refresh,
                token_hash=self.codec.hash_refresh_token(refresh_token),
                expires_at=now + self.policy.refresh_token_ttl,
                created_at=now,
                session_id=session_id,
                session_expires_at=now + self.policy.session_ttl,
            )
        )

        self.sweep_expired_tokens(now)
        self.audit.record("LOGIN_SUCCESS", user.id)
        return LoginSuccess(access_token=access_token, refresh_token=refresh_token, user=user)

    # -- refresh -----------------------------------------------------------

    def refresh(self, raw_token: str, *, client_ip: str | None = None) -> RefreshSuccess | AuthFailure:
        key = build_key("refresh", client_ip)
        if self.rate_limiter is not None and self.rate_limiter.is_limited(key):
            return AuthFailure(AuthError.too_many_requests)

        result = self._refresh(raw_token)

        if self.rate_limiter is not None:
            if isinstance(result, RefreshSuccess):
                self.rate_limiter.reset(key)
            elif result.error == AuthError.expired_or_invalid_token:
                self.rate_limiter.register_failure(key)
        return result

    def _revoke_session(self, stored: TokenRecord) -> None:
        if stored.session_id:
            self.tokens.delete_by_session_id(stored.session_id)
        else:
            self.tokens.delete_by_id(stored.id)

    def _refresh(self, raw_token: str) -> RefreshSuccess | AuthFailure:
        invalid = AuthFailure(AuthError.expired_or_invalid_token)
        if not raw_token:
            return invalid

        stored = self.tokens.find_by_hash(self.codec.hash_refresh_token(raw_token), TokenType.refresh)
        if stored is None:
            return invalid

        now = self._now()

        if stored.revoked_at is not None:
            # Replay of a token that was already rotated away.
            self._revoke_session(stored)
            self.audit.alert(REFRESH_REUSE_DETECTED, stored.user_id, session_id=stored.session_id)
            return invalid

        if not stored.session_id or stored.session_expires_at is None:
            self.tokens.delete_by_id(stored.id)
            return invalid

        session_expires_at = as_utc(stored.session_expires_at)
        if session_expires_at <= now:
            self.tokens.delete_by_session_id(stored.session_id)
            return invalid

        if as_utc(stored.expires_at) <= now:
            self.tokens.delete_by_id(stored.id)
            return invalid

        try:
            payload = self.codec.verify_refresh_token(raw_token)
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            self.tokens.delete_by_id(stored.id)
            return invalid
        if user_id != stored.user_id or payload.get("sid") != stored.session_id:
            self.tokens.delete_by_id(stored.id)
            return invalid

        user = self.credentials.find_user_by_id(user_id)
        if user is None or not user.can_authenticate:
            self.tokens.delete_by_id(stored.id)
            return invalid

        access_token = self.codec.generate_access_token(user_id)
        refresh_token = self.codec.generate_refresh_token(user_id, session_id=stored.session_id)
        child = self.tokens.create(
            NewToken(
                user_id=user_id,
                type=TokenType.refresh,
                token_hash=self.codec.hash_refresh_token(refresh_token),
                expires_at=now + self.policy.refresh_token_ttl,
                created_at=now,
                session_id=stored.session_id,
                session_expires_at=session_expires_at,
            )
        )

        try:
            revoked = self.tokens.mark_revoked(stored.id, now)
        except Exception:
            self.tokens.delete_by_id(child.id)
            raise

        if revoked == 0:
            # A concurrent refresh rotated the same parent first.
            self.tokens.delete_by_id(child.id)
            self.tokens.delete_by_session_id(stored.session_id)
            self.audit.alert(REFRESH_REUSE_DETECTED, stored.user_id, session_id=stored.session_id)
            return invalid

        self.sweep_expired_tokens(now)
        return RefreshSuccess(access_token=access_token, refresh_token=refresh_token, user_id=user_id)

    # -- logout ------------------------------------------------------------

    def logout(self, raw_token: str) -> LogoutSuccess | AuthFailure:
        stored = None
        if raw_token:
            stored = self.tokens.find_by_hash(self.codec.hash_refresh_token(raw_token), TokenType.refresh)

        if stored is None or stored.revoked_at is not None:
            self.audit.alert(LOGOUT_TOKEN_NOT_FOUND, stored.user_id if stored else None)
            return AuthFailure(AuthError.token_not_found)

        self.tokens.delete_by_id(stored.id)
        self.audit.record("LOGOUT_SUCCESS", stored.user_id)
        return LogoutSuccess(user_id=stored.user_id)

    # -- access tokens -----------------------------------------------------

    def authenticate(self, access_token: str) -> AccessGranted | AuthFailure:
        invalid = AuthFailure(AuthError.expired_or_invalid_token)
        try:
            payload = self.codec.verify_access_token(access_token)
            user_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            return invalid

        user = self.credentials.find_user_by_id(user_id)
        if user is None or not user.can_authenticate:
            return invalid
        return AccessGranted(user=user)

    # -- registration and one-time tokens ----------------------------------

    def register(self, email: str, password: str) -> RegisterSuccess | AuthFailure:
        normalized_email = normalize_email(email)
        if normalized_email is None or not password:
            return AuthFailure(AuthError.invalid_credentials)
        if self.credentials.find_user_by_email(normalized_email) is not None:
            return AuthFailure(AuthError.email_already_registered)

        user = self.credentials.create_user(normalized_email, self.password_hasher.hash(password))
        raw_token = self._issue_one_time_token(
            user.id, TokenType.email_verification, self.policy.email_verification_ttl
        )
        self._notify(self.notifier.send_verification_email, user, raw_token, TokenType.email_verification)
        return RegisterSuccess(user=user)

    def _issue_one_time_token(self, user_id: int, token_type: TokenType, ttl: timedelta) -> str:
        now = self._now()
        raw_token = self.codec.generate_one_time_token()
        self.tokens.create(
            NewToken(
                user_id=user_id,
                type=token_type,
                token_hash=self.codec.hash_one_time_token(raw_token),
                expires_at=now + ttl,
                created_at=now,
            )
        )
        return raw_token

    def _notify(
        self,
        send: Callable[[str, str, int], None],
        user: UserRecord,
        raw_token: str,
        token_type: TokenType,
    ) -> None:
        # Delivery problems must not change the outward result.
        try:
            send(user.email, raw_token, user.id)
        except Exception as exc:
            self.audit.record(
                "AUTH_EMAIL_SEND_FAILED",
                user.id,
                type=token_type.value,
                error=type(exc).__name__,
            )

    def _consume_one_time_token(
        self, raw_token: str, token_type: TokenType
    ) -> tuple[TokenRecord | None, bool]:
        """
        Returns (record, consumed_now). consumed_now is False when the token was
        already revoked, either earlier or by a concurrent call.
        """
        if not raw_token:
            return None, False
        record = self.tokens.find_by_hash(self.codec.hash_one_time_token(raw_token), token_type)
        if record is None:
            return None, False
        if record.revoked_at is not None:
            return record, False

        now = self._now()
        if as_utc(record.expires_at) <= now:
            self.tokens.delete_by_id(record.id)
            return None, False

        revoked = self.tokens.mark_revoked(record.id, now)
        return record, revoked > 0

    def verify_email(self, raw_token: str) -> VerifyEmailSuccess | AuthFailure:
        record, consumed = self._consume_one_time_token(raw_token, TokenType.email_verification)
        if record is None:
            return AuthFailure(AuthError.expired_or_invalid_token)
        if not consumed:
            return VerifyEmailSuccess(user_id=record.user_id, already_verified=True)

        user = self.credentials.find_user_by_id(record.user_id)
        if user is None:
            return AuthFailure(AuthError.expired_or_invalid_token)

        stamped = self.credentials.set_email_verified(user.id, self._now())
        self.audit.record("EMAIL_VERIFIED", user.id)
        return VerifyEmailSuccess(user_id=user.id, already_verified=stamped == 0)

    def resend_verification(self, email: str) -> EmailDispatched | AuthFailure:
        normalized_email = normalize_email(email)
        if normalized_email is None:
            return EmailDispatched()
        user = self.credentials.find_user_by_email(normalized_email)
        if user is None or not user.active or user.email_verified_at is not None:
            return EmailDispatched()

        latest = self.tokens.find_latest_by_user_and_type(user.id, TokenType.email_verification)
        if latest is not None and latest.revoked_at is None:
            elapsed = (self._now() - as_utc(latest.created_at)).total_seconds()
            cooldown = self.policy.resend_cooldown.total_seconds()
            if elapsed < cooldown:
                remaining = max(1, math.ceil(cooldown - elapsed))
                return AuthFailure(AuthError.cooldown_active, cooldown_seconds=remaining)

        self.tokens.delete_by_user_and_type(user.id, TokenType.email_verification)
        raw_token = self._issue_one_time_token(
            user.id, TokenType.email_verification, self.policy.email_verification_ttl
        )
        self._notify(self.notifier.send_verification_email, user, raw_token, TokenType.email_verification)
        return EmailDispatched()

    def request_password_reset(self, email: str) -> EmailDispatched:
        normalized_email = normalize_email(email)
        if normalized_email is None:
            return EmailDispatched()
        user = self.credentials.find_user_by_email(normalized_email)
        if user is None or not user.active:
            return EmailDispatched()

        self.tokens.delete_by_user_and_type(user.id, TokenType.password_reset)
        raw_token = self._issue_one_time_token(
            user.id, TokenType.password_reset, self.policy.password_reset_ttl
        )
        self._notify(self.notifier.send_password_reset_email, user, raw_token, TokenType.password_reset)
        return EmailDispatched()

    def reset_password(self, raw_token: str, new_password: str) -> PasswordResetSuccess | AuthFailure:
        invalid = AuthFailure(AuthError.expired_or_invalid_token)
        if not new_password:
            return invalid

        record, consumed = self._consume_one_time_token(raw_token, TokenType.password_reset)
        if record is None or not consumed:
            return invalid

        user = self.credentials.find_user_by_id(record.user_id)
        if user is None:
            return invalid

        self.credentials.set_password_hash(user.id, self.password_hasher.hash(new_password))
        self.tokens.delete_by_user_and_type(user.id, TokenType.refresh)
        self.audit.record("PASSWORD_RESET_COMPLETED", user.id)
        return PasswordResetSuccess(user_id=user.id)

    # -- maintenance -------------------------------------------------------

    def sweep_expired_tokens(self, now: datetime | None = None) -> int:
        try:
            deleted = self.tokens.delete_expired(now or self._now())
        except SQLAlchemyError as exc:
            logger.warning("expired_token_sweep_failed", error=type(exc).__name__)
            return 0
        if deleted:
            self.audit.record("EXPIRED_TOKENS_SWEPT", deleted=deleted)
        return deleted
