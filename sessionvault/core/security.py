from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from jose import JWTError, jwt
from passlib.context import CryptContext

from sessionvault.core.config import Settings, settings
from sessionvault.core.errors import ConfigurationError

ONE_TIME_TOKEN_BYTES = 32

# NOTE: bcrypt backend has compatibility issues in this runtime.
# pbkdf2_sha256 is stable and supported directly by passlib.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str: ...

    def verify(self, password: str, password_hash: str) -> bool: ...

    def dummy_verify(self, password: str) -> None: ...


class PasslibPasswordHasher:
    def __init__(self, context: CryptContext = pwd_context) -> None:
        self._context = context

    def hash(self, password: str) -> str:
        """
        Hash plain password using passlib context.
        """
        if not isinstance(password, str) or not password:
            raise ValueError("Password must be a non-empty string")
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        """
        Verify plain password against stored hash. passlib compares digests in constant time.
        """
        if not password or not password_hash:
            return False
        try:
            return self._context.verify(password, password_hash)
        except (ValueError, TypeError):
            return False

    def dummy_verify(self, password: str) -> None:
        """
        Spend the same time as a real verify when there is no stored hash to check.
        """
        self._context.dummy_verify()


def generate_one_time_token() -> str:
    return secrets.token_urlsafe(ONE_TIME_TOKEN_BYTES)


def hash_one_time_token(token: str) -> str:
    if not token:
        raise ValueError("Token is required")
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """
    Signs and verifies access/refresh JWTs and hashes opaque token secrets.

    Both signing secrets are required; a codec cannot be constructed without
    them, so a misconfigured deployment fails at startup.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_token_minutes: int = 60,
        refresh_token_days: int = 30,
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("JWT_ACCESS_SECRET", access_secret),
                ("JWT_REFRESH_SECRET", refresh_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"JWT secret(s) missing: {', '.join(missing)}")

        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._algorithm = algorithm
        self.access_token_minutes = int(access_token_minutes)
        self.refresh_token_days = int(refresh_token_days)
        self._issuer = issuer or None
        self._audience = audience or None

    @classmethod
    def from_settings(cls, config: Settings = settings) -> TokenCodec:
        return cls(
            access_secret=config.JWT_ACCESS_SECRET,
            refresh_secret=config.JWT_REFRESH_SECRET,
            algorithm=config.JWT_ALG,
            access_token_minutes=config.ACCESS_TOKEN_MINUTES,
            refresh_token_days=config.REFRESH_TOKEN_DAYS,
            issuer=config.JWT_ISSUER,
            audience=config.JWT_AUDIENCE,
        )

    def _create_token(
        self,
        *,
        user_id: int,
        token_type: str,
        secret: str,
        expires_delta: timedelta,
        extra_claims: dict[str, Any] | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        exp = now + expires_delta

        payload: dict[str, Any] = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int(exp.timestamp()),
            "type": token_type,
        }
        if self._issuer:
            payload["iss"] = self._issuer
        if self._audience:
            payload["aud"] = self._audience
        if extra_claims:
            for key in ("sub", "iat", "exp", "type", "iss", "aud"):
                if key in extra_claims:
                    raise ValueError(f"extra_claims cannot override '{key}'")
            payload.update(extra_claims)

        return jwt.encode(payload, secret, algorithm=self._algorithm)

    def _decode_token(self, token: str, *, secret: str, expected_type: str) -> dict[str, Any]:
        if not token:
            raise ValueError("Token is required")

        options: dict[str, Any] = {"algorithms": [self._algorithm]}
        if self._issuer:
            options["issuer"] = self._issuer
        if self._audience:
            options["audience"] = self._audience
        try:
            payload = jwt.decode(token, secret, **options)
        except JWTError as e:
            raise ValueError("Invalid or expired token") from e

        if payload.get("type") != expected_type:
            raise ValueError("Invalid token type")

        sub = payload.get("sub")
        if not sub:
            raise ValueError("Token subject is missing")

        return payload

    def generate_access_token(self, user_id: int) -> str:
        return self._create_token(
            user_id=user_id,
            token_type="access",
            secret=self._access_secret,
            expires_delta=timedelta(minutes=self.access_token_minutes),
        )

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """
        Decode and validate JWT access token.
        Returns token payload dict if valid.

        Raises ValueError on invalid/expired token.
        """
        return self._decode_token(token, secret=self._access_secret, expected_type="access")

    def generate_refresh_token(self, user_id: int, *, session_id: str) -> str:
        # jti keeps two tokens minted in the same second for the same user distinct.
        return self._create_token(
            user_id=user_id,
            token_type="refresh",
            secret=self._refresh_secret,
            expires_delta=timedelta(days=self.refresh_token_days),
            extra_claims={"sid": session_id, "jti": secrets.token_urlsafe(16)},
        )

    def verify_refresh_token(self, token: str) -> dict[str, Any]:
        return self._decode_token(token, secret=self._refresh_secret, expected_type="refresh")

    def hash_refresh_token(self, token: str) -> str:
        if not token:
            raise ValueError("Refresh token is required")
        return hmac.new(
            self._refresh_secret.encode("utf-8"),
            token.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def generate_one_time_token(self) -> str:
        return generate_one_time_token()

    def hash_one_time_token(self, token: str) -> str:
        return hash_one_time_token(token)
