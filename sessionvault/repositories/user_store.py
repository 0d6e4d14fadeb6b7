from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from sessionvault.models.base import utcnow
from sessionvault.models.user import User
from sessionvault.repositories.base import UserRecord


class SqlCredentialStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def find_user_by_email(self, normalized_email: str) -> UserRecord | None:
        statement = select(User).where(func.lower(User.email) == normalized_email.strip().lower())
        row = self.session.exec(statement).first()
        return UserRecord.from_row(row) if row is not None else None

    def find_user_by_id(self, user_id: int) -> UserRecord | None:
        row = self.session.get(User, user_id)
        return UserRecord.from_row(row) if row is not None else None

    def create_user(self, email: str, password_hash: str) -> UserRecord:
        row = User(email=email.strip().lower(), password_hash=password_hash)
        self.session.add(row)
        self._commit()
        self.session.refresh(row)
        return UserRecord.from_row(row)

    def set_password_hash(self, user_id: int, password_hash: str) -> None:
        statement = (
            update(User)
            .where(col(User.id) == user_id)
            .values(password_hash=password_hash, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            self.session.exec(statement)
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self._commit()

    def set_email_verified(self, user_id: int, verified_at: datetime) -> int:
        """
        Stamp email_verified_at once. Returns 0 when the user was already verified.
        """
        statement = (
            update(User)
            .where(col(User.id) == user_id, col(User.email_verified_at).is_(None))
            .values(email_verified_at=verified_at, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.exec(statement)
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self._commit()
        return result.rowcount or 0
