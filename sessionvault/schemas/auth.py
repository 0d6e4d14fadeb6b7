from datetime import datetime

from pydantic import Field

from sessionvault.schemas.camel_model import CamelModel

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class UserCreate(CamelModel):
    email: str = Field(min_length=5, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=255)


class UserRead(CamelModel):
    id: int
    email: str
    active: bool
    email_verified_at: datetime | None = None

    created_at: datetime
    updated_at: datetime


class UserLogin(CamelModel):
    email: str = Field(min_length=5, max_length=255, pattern=EMAIL_PATTERN)
    # No minimum length: an empty password is rejected as invalid credentials, not a validation error.
    password: str = Field(max_length=255)


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"


class LogoutResponse(CamelModel):
    success: bool = True


class EmailRequest(CamelModel):
    email: str = Field(min_length=5, max_length=255, pattern=EMAIL_PATTERN)


class EmailDispatchedResponse(CamelModel):
    sent: bool = True


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1, max_length=512)


class VerifyEmailResponse(CamelModel):
    verified: bool = True
    already_verified: bool


class ResetPasswordRequest(CamelModel):
    token: str = Field(min_length=1, max_length=512)
    password: str = Field(min_length=8, max_length=255)


class ResetPasswordResponse(CamelModel):
    reset: bool = True
