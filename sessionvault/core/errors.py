from enum import Enum


class AuthError(str, Enum):
    invalid_credentials = "invalid-credentials"
    email_not_verified = "email-not-verified"
    expired_or_invalid_token = "expired-or-invalid-token"
    token_not_found = "token-not-found"
    email_already_registered = "email-already-registered"
    cooldown_active = "cooldown-active"
    too_many_requests = "too-many-requests"
    internal_error = "internal-error"


class ConfigurationError(RuntimeError):
    """Raised at startup when a required setting is missing or inconsistent."""
