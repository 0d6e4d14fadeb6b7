from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from sessionvault.api.routes.auth import router as auth_router
from sessionvault.api.routes.health import router as health_router
from sessionvault.core.config import settings
from sessionvault.core.errors import AuthError
from sessionvault.core.logging import get_logger
from sessionvault.core.rate_limiter import SlidingWindowRateLimiter
from sessionvault.core.security import TokenCodec
from sessionvault.services.auth import AuthPolicy
from sessionvault.services.notifier import SmtpNotifier

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Missing signing secrets or an inconsistent TTL policy abort startup here.
    app.state.token_codec = TokenCodec.from_settings(settings)
    app.state.auth_policy = AuthPolicy.from_settings(settings)
    app.state.rate_limiter = SlidingWindowRateLimiter.from_settings(settings)
    app.state.notifier = SmtpNotifier.from_settings(settings)
    logger.info("sessionvault_started")
    yield


app = FastAPI(title="SessionVault", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("persistence_error", path=request.url.path, error=type(exc).__name__)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": AuthError.internal_error.value},
    )


app.include_router(health_router)
app.include_router(auth_router)
