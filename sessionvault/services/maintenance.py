"""Periodic expired-token sweep.

Run once from cron or a scheduler: ``python -m sessionvault.services.maintenance``.
"""
from __future__ import annotations

from datetime import datetime

from sqlmodel import Session

from sessionvault.core.logging import get_logger
from sessionvault.db.session import get_engine
from sessionvault.models.base import utcnow
from sessionvault.repositories.token_store import SqlTokenStore

logger = get_logger(__name__)


def sweep_expired_tokens(session: Session, now: datetime | None = None) -> int:
    deleted = SqlTokenStore(session).delete_expired(now or utcnow())
    logger.info("expired_tokens_swept", deleted=deleted)
    return deleted


def main() -> int:
    with Session(get_engine()) as session:
        sweep_expired_tokens(session)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
