from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from sessionvault.core.security import PasslibPasswordHasher, TokenCodec
from sessionvault.models.token import Token
from sessionvault.models.user import User
from sessionvault.repositories.token_store import SqlTokenStore
from sessionvault.repositories.user_store import SqlCredentialStore
from sessionvault.services.auth import AuthManager

TEST_ACCESS_SECRET = "test-access-secret-0123456789"
TEST_REFRESH_SECRET = "test-refresh-secret-9876543210"
DEFAULT_PASSWORD = "correct-password"


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingAudit:
    def __init__(self) -> None:
        self.alerts: list[tuple[str, int | None, dict]] = []
        self.records: list[tuple[str, int | None, dict]] = []

    def alert(self, event: str, user_id: int | None = None, **details) -> None:
        self.alerts.append((event, user_id, details))

    def record(self, event: str, user_id: int | None = None, **details) -> None:
        self.records.append((event, user_id, details))

    def alert_events(self) -> list[str]:
        return [event for event, _user_id, _details in self.alerts]

    def record_events(self) -> list[str]:
        return [event for event, _user_id, _details in self.records]


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str, str, int]] = []

    def _deliver(self, kind: str, address: str, raw_token: str, user_id: int) -> None:
        if self.fail:
            raise ConnectionError("smtp unavailable")
        self.sent.append((kind, address, raw_token, user_id))

    def send_verification_email(self, address: str, raw_token: str, user_id: int) -> None:
        self._deliver("verification", address, raw_token, user_id)

    def send_password_reset_email(self, address: str, raw_token: str, user_id: int) -> None:
        self._deliver("password_reset", address, raw_token, user_id)

    def last_token(self, kind: str) -> str:
        tokens = [raw for sent_kind, _address, raw, _user_id in self.sent if sent_kind == kind]
        assert tokens, f"no {kind} email was sent"
        return tokens[-1]


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine: Engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(access_secret=TEST_ACCESS_SECRET, refresh_secret=TEST_REFRESH_SECRET)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


@pytest.fixture
def token_store(session: Session) -> SqlTokenStore:
    return SqlTokenStore(session)


@pytest.fixture
def manager(
    session: Session,
    codec: TokenCodec,
    clock: FakeClock,
    audit: RecordingAudit,
    notifier: RecordingNotifier,
) -> AuthManager:
    return AuthManager(
        credentials=SqlCredentialStore(session),
        tokens=SqlTokenStore(session),
        codec=codec,
        notifier=notifier,
        audit=audit,
        clock=clock,
    )


@pytest.fixture
def make_user(engine: Engine) -> Callable[..., User]:
    hasher = PasslibPasswordHasher()

    def _make_user(
        email: str = "user@example.com",
        password: str = DEFAULT_PASSWORD,
        *,
        active: bool = True,
        verified: bool = True,
    ) -> User:
        with Session(engine) as session:
            user = User(
                email=email,
                password_hash=hasher.hash(password),
                active=active,
                email_verified_at=datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc) if verified else None,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            return user

    return _make_user


@pytest.fixture
def count_tokens(engine: Engine) -> Callable[..., int]:
    def _count(**filters) -> int:
        with Session(engine) as session:
            rows = session.exec(select(Token).filter_by(**filters)).all()
            return len(rows)

    return _count
