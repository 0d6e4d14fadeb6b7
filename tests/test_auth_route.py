from collections.abc import Callable, Iterator
from http.cookies import SimpleCookie

import pytest
from fastapi.testclient import TestClient
from httpx import Response
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from sessionvault.api.routes.auth import get_notifier
from sessionvault.core.config import settings
from sessionvault.core.errors import ConfigurationError
from sessionvault.db.session import get_session
from sessionvault.main import app
from sessionvault.models.user import User
from sessionvault.repositories.token_store import SqlTokenStore

PASSWORD = "correct-password"


@pytest.fixture
def configured_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "JWT_ACCESS_SECRET", "route-access-secret")
    monkeypatch.setattr(settings, "JWT_REFRESH_SECRET", "route-refresh-secret")
    monkeypatch.setattr(settings, "REFRESH_COOKIE_SECURE", False)
    monkeypatch.setattr(settings, "RATE_LIMIT_MAX_ATTEMPTS", 3)


@pytest.fixture
def client(engine: Engine, notifier, configured_settings) -> Iterator[TestClient]:
    def get_test_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = get_test_session
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


def _refresh_cookie(response: Response) -> SimpleCookie:
    cookie = SimpleCookie()
    cookie.load(response.headers["set-cookie"])
    return cookie


def _post_with_refresh_cookie(client: TestClient, path: str, refresh_token: str) -> Response:
    client.cookies.clear()
    return client.post(path, headers={"Cookie": f"{settings.REFRESH_COOKIE_NAME}={refresh_token}"})


def _login(client: TestClient, email: str = "user@example.com", password: str = PASSWORD) -> Response:
    return client.post("/auth/login", json={"email": email, "password": password})


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_startup_fails_without_signing_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "JWT_ACCESS_SECRET", "")
    monkeypatch.setattr(settings, "JWT_REFRESH_SECRET", "route-refresh-secret")

    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_login_me_refresh_and_replay(client: TestClient, make_user: Callable[..., User]) -> None:
    user = make_user()

    login = _login(client)
    assert login.status_code == 200
    body = login.json()
    assert body["tokenType"] == "bearer"
    cookie = _refresh_cookie(login)[settings.REFRESH_COOKIE_NAME]
    assert cookie["httponly"]
    assert cookie["path"] == "/auth"
    assert cookie["samesite"].lower() == "strict"
    assert int(cookie["max-age"]) == settings.REFRESH_TOKEN_DAYS * 24 * 60 * 60
    first_refresh = cookie.value

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['accessToken']}"})
    assert me.status_code == 200
    assert me.json()["id"] == user.id
    assert me.json()["email"] == "user@example.com"
    assert "passwordHash" not in me.json()

    rotated = _post_with_refresh_cookie(client, "/auth/refresh", first_refresh)
    assert rotated.status_code == 200
    second_refresh = _refresh_cookie(rotated)[settings.REFRESH_COOKIE_NAME].value
    assert second_refresh != first_refresh
    assert client.get(
        "/auth/me", headers={"Authorization": f"Bearer {rotated.json()['accessToken']}"}
    ).status_code == 200

    replay = _post_with_refresh_cookie(client, "/auth/refresh", first_refresh)
    assert replay.status_code == 401
    assert replay.json() == {"detail": "expired-or-invalid-token"}

    # The replay revoked the whole session, including the newest token.
    after_replay = _post_with_refresh_cookie(client, "/auth/refresh", second_refresh)
    assert after_replay.status_code == 401


def test_refresh_without_cookie(client: TestClient) -> None:
    client.cookies.clear()

    response = client.post("/auth/refresh")

    assert response.status_code == 401
    assert response.json() == {"detail": "expired-or-invalid-token"}


def test_me_requires_valid_access_token(client: TestClient) -> None:
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_unknown_email_and_wrong_password_look_the_same(
    client: TestClient, make_user: Callable[..., User]
) -> None:
    make_user()

    unknown = _login(client, email="nobody@example.com")
    wrong = client.post("/auth/login", json={"email": "other@example.com", "password": "wrong"})
    wrong_password = _login(client, password="wrong-password")

    assert unknown.status_code == wrong.status_code == wrong_password.status_code == 401
    assert unknown.json() == wrong_password.json() == {"detail": "invalid-credentials"}


def test_unverified_login_offers_resend(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user(verified=False)

    response = _login(client, email="USER@example.com")

    assert response.status_code == 401
    assert response.json() == {
        "detail": {"code": "email-not-verified", "email": "user@example.com", "canResend": True}
    }


def test_login_rate_limit(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user()

    for _ in range(3):
        assert _login(client, password="wrong-password").status_code == 401

    limited = _login(client)
    assert limited.status_code == 429
    assert limited.json() == {"detail": "too-many-requests"}


def test_logout_clears_cookie_and_token(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user()
    refresh_token = _refresh_cookie(_login(client))[settings.REFRESH_COOKIE_NAME].value

    response = _post_with_refresh_cookie(client, "/auth/logout", refresh_token)

    assert response.status_code == 200
    assert response.json() == {"success": True}
    cleared = _refresh_cookie(response)[settings.REFRESH_COOKIE_NAME]
    assert cleared.value == ""
    assert int(cleared["max-age"]) == 0
    assert _post_with_refresh_cookie(client, "/auth/refresh", refresh_token).status_code == 401
    assert _post_with_refresh_cookie(client, "/auth/logout", refresh_token).status_code == 400


def test_logout_without_cookie(client: TestClient) -> None:
    client.cookies.clear()

    response = client.post("/auth/logout")

    assert response.status_code == 400
    assert response.json() == {"detail": "token-not-found"}


def test_register_verify_and_login(client: TestClient, notifier) -> None:
    registered = client.post(
        "/auth/register", json={"email": "New@Example.com", "password": PASSWORD}
    )
    assert registered.status_code == 201
    assert registered.json()["email"] == "new@example.com"
    assert registered.json()["emailVerifiedAt"] is None

    assert _login(client, email="new@example.com").status_code == 401

    raw_token = notifier.last_token("verification")
    verified = client.post("/auth/verify-email", json={"token": raw_token})
    assert verified.json() == {"verified": True, "alreadyVerified": False}
    again = client.post("/auth/verify-email", json={"token": raw_token})
    assert again.json() == {"verified": True, "alreadyVerified": True}

    assert _login(client, email="new@example.com").status_code == 200


def test_register_duplicate_email(client: TestClient, make_user: Callable[..., User]) -> None:
    make_user()

    response = client.post("/auth/register", json={"email": "user@example.com", "password": PASSWORD})

    assert response.status_code == 409
    assert response.json() == {"detail": "email-already-registered"}


def test_register_rejects_short_password(client: TestClient) -> None:
    response = client.post("/auth/register", json={"email": "new@example.com", "password": "short"})

    assert response.status_code == 422


def test_verify_email_with_unknown_token(client: TestClient) -> None:
    response = client.post("/auth/verify-email", json={"token": "unknown"})

    assert response.status_code == 400
    assert response.json() == {"detail": "expired-or-invalid-token"}


def test_resend_verification_cooldown(client: TestClient, notifier) -> None:
    client.post("/auth/register", json={"email": "new@example.com", "password": PASSWORD})

    response = client.post("/auth/resend-verification", json={"email": "new@example.com"})

    assert response.status_code == 429
    detail = response.json()["detail"]
    assert detail["code"] == "cooldown-active"
    assert 0 < detail["cooldownSeconds"] <= 60
    assert len(notifier.sent) == 1


def test_resend_verification_unknown_email_is_generic(client: TestClient, notifier) -> None:
    response = client.post("/auth/resend-verification", json={"email": "nobody@example.com"})

    assert response.status_code == 200
    assert response.json() == {"sent": True}
    assert notifier.sent == []


def test_forgot_and_reset_password(
    client: TestClient, notifier, make_user: Callable[..., User]
) -> None:
    make_user()
    old_refresh = _refresh_cookie(_login(client))[settings.REFRESH_COOKIE_NAME].value

    forgot = client.post("/auth/forgot-password", json={"email": "user@example.com"})
    assert forgot.json() == {"sent": True}
    unknown = client.post("/auth/forgot-password", json={"email": "nobody@example.com"})
    assert unknown.json() == forgot.json()

    raw_token = notifier.last_token("password_reset")
    reset = client.post(
        "/auth/reset-password", json={"token": raw_token, "password": "brand-new-password"}
    )
    assert reset.status_code == 200
    assert reset.json() == {"reset": True}

    assert _post_with_refresh_cookie(client, "/auth/refresh", old_refresh).status_code == 401
    assert _login(client).status_code == 401
    assert _login(client, password="brand-new-password").status_code == 200

    reused = client.post(
        "/auth/reset-password", json={"token": raw_token, "password": "another-password"}
    )
    assert reused.status_code == 400


def test_persistence_failure_maps_to_internal_error(
    client: TestClient, make_user: Callable[..., User], monkeypatch: pytest.MonkeyPatch
) -> None:
    make_user()

    def failing_create(self, token):
        raise SQLAlchemyError("database unavailable")

    monkeypatch.setattr(SqlTokenStore, "create", failing_create)

    response = _login(client)

    assert response.status_code == 500
    assert response.json() == {"detail": "internal-error"}
