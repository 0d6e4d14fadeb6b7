from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from sessionvault.models.base import utcnow
from sessionvault.models.token import Token, TokenType
from sessionvault.repositories.base import NewToken, TokenRecord


class SqlTokenStore:
    """
    Token persistence over a SQLModel session.

    Every write commits immediately; callers never batch token mutations into
    one transaction. ``mark_revoked`` is a single conditional UPDATE, so two
    concurrent rotations of the same row cannot both observe success.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    def _execute_write(self, statement) -> int:
        # The commit below expires the identity map, so no in-session sync is needed.
        statement = statement.execution_options(synchronize_session=False)
        try:
            result = self.session.exec(statement)
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self._commit()
        return result.rowcount or 0

    def find_by_hash(
        self, token_hash: str, token_type: TokenType = TokenType.refresh
    ) -> TokenRecord | None:
        statement = select(Token).where(
            Token.token_hash == token_hash,
            Token.type == token_type,
        )
        row = self.session.exec(statement).first()
        return TokenRecord.from_row(row) if row is not None else None

    def find_latest_by_user_and_type(
        self, user_id: int, token_type: TokenType
    ) -> TokenRecord | None:
        statement = (
            select(Token)
            .where(Token.user_id == user_id, Token.type == token_type)
            .order_by(col(Token.created_at).desc(), col(Token.id).desc())
        )
        row = self.session.exec(statement).first()
        return TokenRecord.from_row(row) if row is not None else None

    def create(self, token: NewToken) -> TokenRecord:
        row = Token(
            user_id=token.user_id,
            type=token.type,
            token_hash=token.token_hash,
            session_id=token.session_id,
            session_expires_at=token.session_expires_at,
            expires_at=token.expires_at,
            created_at=token.created_at,
            updated_at=token.created_at,
        )
        self.session.add(row)
        self._commit()
        self.session.refresh(row)
        return TokenRecord.from_row(row)

    def delete_by_id(self, token_id: int) -> int:
        return self._execute_write(delete(Token).where(col(Token.id) == token_id))

    def delete_by_session_id(self, session_id: str) -> int:
        return self._execute_write(
            delete(Token).where(
                col(Token.session_id) == session_id,
                col(Token.type) == TokenType.refresh,
            )
        )

    def delete_by_user_and_type(self, user_id: int, token_type: TokenType) -> int:
        return self._execute_write(
            delete(Token).where(col(Token.user_id) == user_id, col(Token.type) == token_type)
        )

    def mark_revoked(self, token_id: int, revoked_at: datetime) -> int:
        statement = (
            update(Token)
            .where(col(Token.id) == token_id, col(Token.revoked_at).is_(None))
            .values(revoked_at=revoked_at, updated_at=utcnow())
        )
        return self._execute_write(statement)

    def delete_expired(self, now: datetime) -> int:
        return self._execute_write(delete(Token).where(col(Token.expires_at) < now))
