from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import Session

from sessionvault.core.config import settings
from sessionvault.core.errors import AuthError
from sessionvault.core.rate_limiter import SlidingWindowRateLimiter, normalize_email
from sessionvault.core.security import TokenCodec
from sessionvault.db.session import get_session
from sessionvault.repositories.base import UserRecord
from sessionvault.repositories.token_store import SqlTokenStore
from sessionvault.repositories.user_store import SqlCredentialStore
from sessionvault.schemas.auth import (
    EmailDispatchedResponse,
    EmailRequest,
    LogoutResponse,
    ResetPasswordRequest,
    ResetPasswordResponse,
    TokenResponse,
    UserCreate,
    UserLogin,
    UserRead,
    VerifyEmailRequest,
    VerifyEmailResponse,
)
from sessionvault.services.auth import AuthManager, AuthPolicy
from sessionvault.services.notifier import Notifier
from sessionvault.services.results import AuthFailure

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

REFRESH_COOKIE_PATH = "/auth"

SessionDep = Annotated[Session, Depends(get_session)]
TokenDep = Annotated[str, Depends(oauth2_scheme)]


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def get_auth_policy(request: Request) -> AuthPolicy:
    return request.app.state.auth_policy


def get_rate_limiter(request: Request) -> SlidingWindowRateLimiter:
    return request.app.state.rate_limiter


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_auth_manager(
    session: SessionDep,
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    policy: Annotated[AuthPolicy, Depends(get_auth_policy)],
    rate_limiter: Annotated[SlidingWindowRateLimiter, Depends(get_rate_limiter)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> AuthManager:
    return AuthManager(
        credentials=SqlCredentialStore(session),
        tokens=SqlTokenStore(session),
        codec=codec,
        notifier=notifier,
        policy=policy,
        rate_limiter=rate_limiter,
    )


AuthManagerDep = Annotated[AuthManager, Depends(get_auth_manager)]


def _unauthorized(detail: object = AuthError.invalid_credentials.value) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _too_many_requests() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=AuthError.too_many_requests.value,
    )


def _client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=int(settings.REFRESH_TOKEN_DAYS) * 24 * 60 * 60,
        path=REFRESH_COOKIE_PATH,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=True,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        path=REFRESH_COOKIE_PATH,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=True,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def _serialize_user(user: UserRecord) -> UserRead:
    return UserRead(
        id=user.id,
        email=user.email,
        active=user.active,
        email_verified_at=user.email_verified_at,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


def get_current_user(manager: AuthManagerDep, token: TokenDep) -> UserRecord:
    result = manager.authenticate(token)
    if isinstance(result, AuthFailure):
        raise _unauthorized(AuthError.expired_or_invalid_token.value)
    return result.user


CurrentUserDep = Annotated[UserRecord, Depends(get_current_user)]


@router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register_user(payload: UserCreate, manager: AuthManagerDep) -> UserRead:
    result = manager.register(payload.email, payload.password)
    if isinstance(result, AuthFailure):
        if result.error == AuthError.email_already_registered:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result.error.value)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error.value)
    return _serialize_user(result.user)


@router.post("/login", response_model=TokenResponse)
def login_user(
    payload: UserLogin,
    request: Request,
    response: Response,
    manager: AuthManagerDep,
) -> TokenResponse:
    result = manager.login(payload.email, payload.password, client_ip=_client_ip(request))
    if isinstance(result, AuthFailure):
        if result.error == AuthError.too_many_requests:
            raise _too_many_requests()
        if result.error == AuthError.email_not_verified:
            raise _unauthorized(
                {
                    "code": AuthError.email_not_verified.value,
                    "email": normalize_email(payload.email),
                    "canResend": True,
                }
            )
        raise _unauthorized(AuthError.invalid_credentials.value)

    _set_refresh_cookie(response, result.refresh_token)
    return TokenResponse(access_token=result.access_token)


@router.post("/refresh", response_model=TokenResponse)
def refresh_tokens(request: Request, response: Response, manager: AuthManagerDep) -> TokenResponse:
    refresh_token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not refresh_token:
        raise _unauthorized(AuthError.expired_or_invalid_token.value)

    result = manager.refresh(refresh_token, client_ip=_client_ip(request))
    if isinstance(result, AuthFailure):
        if result.error == AuthError.too_many_requests:
            raise _too_many_requests()
        raise _unauthorized(AuthError.expired_or_invalid_token.value)

    _set_refresh_cookie(response, result.refresh_token)
    return TokenResponse(access_token=result.access_token)


@router.post("/logout", response_model=LogoutResponse)
def logout(request: Request, response: Response, manager: AuthManagerDep) -> LogoutResponse:
    refresh_token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not refresh_token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=AuthError.token_not_found.value)

    result = manager.logout(refresh_token)
    if isinstance(result, AuthFailure):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=AuthError.token_not_found.value)

    _clear_refresh_cookie(response)
    return LogoutResponse()


@router.post("/verify-email", response_model=VerifyEmailResponse)
def verify_email(payload: VerifyEmailRequest, manager: AuthManagerDep) -> VerifyEmailResponse:
    result = manager.verify_email(payload.token)
    if isinstance(result, AuthFailure):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error.value)
    return VerifyEmailResponse(verified=result.verified, already_verified=result.already_verified)


@router.post("/resend-verification", response_model=EmailDispatchedResponse)
def resend_verification(payload: EmailRequest, manager: AuthManagerDep) -> EmailDispatchedResponse:
    result = manager.resend_verification(payload.email)
    if isinstance(result, AuthFailure):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "code": AuthError.cooldown_active.value,
                "cooldownSeconds": result.cooldown_seconds or 0,
            },
        )
    return EmailDispatchedResponse(sent=result.sent)


@router.post("/forgot-password", response_model=EmailDispatchedResponse)
def forgot_password(payload: EmailRequest, manager: AuthManagerDep) -> EmailDispatchedResponse:
    result = manager.request_password_reset(payload.email)
    return EmailDispatchedResponse(sent=result.sent)


@router.post("/reset-password", response_model=ResetPasswordResponse)
def reset_password(payload: ResetPasswordRequest, manager: AuthManagerDep) -> ResetPasswordResponse:
    result = manager.reset_password(payload.token, payload.password)
    if isinstance(result, AuthFailure):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error.value)
    return ResetPasswordResponse(reset=result.reset)


@router.get("/me", response_model=UserRead)
def get_me(current_user: CurrentUserDep) -> UserRead:
    return _serialize_user(current_user)
