from datetime import timedelta
from typing import Any

from sessionvault.core.logging import StructlogAuditLog, _redact_secrets
from sessionvault.models.token import TokenType
from sessionvault.repositories.base import NewToken
from sessionvault.services import maintenance


class RecordingLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def critical(self, event: str, **kwargs: Any) -> None:
        self.calls.append(("critical", event, kwargs))

    def info(self, event: str, **kwargs: Any) -> None:
        self.calls.append(("info", event, kwargs))


def test_secret_fields_are_redacted() -> None:
    event = _redact_secrets(
        None,
        "info",
        {
            "event": "login",
            "refresh_token": "eyJhbGciOi",
            "password": "hunter2",
            "Authorization": "Bearer abc",
            "user_id": 3,
        },
    )

    assert event == {
        "event": "login",
        "refresh_token": "[REDACTED]",
        "password": "[REDACTED]",
        "Authorization": "[REDACTED]",
        "user_id": 3,
    }


def test_audit_alerts_and_records_use_distinct_levels() -> None:
    logger = RecordingLogger()
    audit = StructlogAuditLog(logger)

    audit.alert("REFRESH_REUSE_DETECTED", 4, session_id="s-1")
    audit.record("LOGIN_SUCCESS", 4)

    assert logger.calls == [
        ("critical", "REFRESH_REUSE_DETECTED", {"severity": "alert", "user_id": 4, "session_id": "s-1"}),
        ("info", "LOGIN_SUCCESS", {"user_id": 4}),
    ]


def test_maintenance_sweep_deletes_expired_rows(session, token_store, make_user, clock, count_tokens) -> None:
    user = make_user()
    for index, offset in enumerate((-10, -1, 5)):
        token_store.create(
            NewToken(
                user_id=user.id,
                type=TokenType.email_verification,
                token_hash=str(index) * 64,
                expires_at=clock.now + timedelta(minutes=offset),
                created_at=clock.now - timedelta(minutes=15),
            )
        )

    assert maintenance.sweep_expired_tokens(session, now=clock.now) == 2
    assert count_tokens() == 1
