from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import clp_api.models  # noqa: F401
from clp_api.core.config import get_settings
from clp_api.core.security import SessionClaims, build_token_issuer
from clp_api.db.session import get_db
from clp_api.dependencies import get_code_sender, get_code_store, get_identity_verifier
from clp_api.main import app
from clp_api.models.base import Base
from clp_api.models.enums import TokenType
from clp_api.services.otp import VerificationCodeStore
from clp_api.services.wechat import ExternalIdentity

PHONE = "13800000000"


class _RecordingSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def dispatch(self, phone: str, code: str) -> bool:
        self.sent.append((phone, code))
        return True


class _FakeVerifier:
    def exchange(self, code: str) -> ExternalIdentity:
        return ExternalIdentity(external_id=f"openid-{code}", union_id=f"union-{code}")


@pytest.fixture
def sender() -> _RecordingSender:
    return _RecordingSender()


@pytest.fixture
def api_client(monkeypatch: pytest.MonkeyPatch, sender: _RecordingSender) -> Generator[TestClient, None, None]:
    monkeypatch.setenv("CLP_APP_ENV", "test")
    monkeypatch.setenv("CLP_AUTH_JWT_SECRET", "http-test-secret-key-at-least-32-bytes")
    monkeypatch.setenv("CLP_AUTH_PASSWORD_HASH_ITERATIONS", "1000")
    get_settings.cache_clear()
    app.dependency_overrides.clear()

    sqlite_engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    testing_session_local = sessionmaker(bind=sqlite_engine, autoflush=False, autocommit=False, class_=Session)
    Base.metadata.create_all(bind=sqlite_engine)

    def override_get_db() -> Generator[Session, None, None]:
        db = testing_session_local()
        try:
            yield db
        finally:
            db.close()

    code_store = VerificationCodeStore(ttl_seconds=300)
    verifier = _FakeVerifier()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_code_store] = lambda: code_store
    app.dependency_overrides[get_code_sender] = lambda: sender
    app.dependency_overrides[get_identity_verifier] = lambda: verifier
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=sqlite_engine)
    get_settings.cache_clear()


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _assert_error(resp, status_code: int, code: str) -> dict:
    assert resp.status_code == status_code, resp.text
    payload = resp.json()
    assert payload["success"] is False
    assert payload["error"]["code"] == code
    assert payload["message"]
    assert payload["request_id"]
    return payload


def _register(client: TestClient, username: str = "alice123", email: str = "a@x.com", password: str = "secret1"):
    return client.post("/api/auth/register", json={"username": username, "email": email, "password": password})


def _login(client: TestClient, email: str = "a@x.com", password: str = "secret1") -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def test_health_live_and_ready(api_client: TestClient):
    live = api_client.get("/api/health/live", headers={"X-Request-Id": "req-1"})
    assert live.status_code == 200
    assert live.json()["data"]["status"] == "ok"
    assert live.json()["request_id"] == "req-1"
    assert live.headers["X-Request-Id"] == "req-1"

    ready = api_client.get("/api/health/ready")
    assert ready.status_code == 200
    assert ready.json()["data"]["status"] == "ready"


def test_register_and_login_by_email(api_client: TestClient):
    resp = _register(api_client)
    assert resp.status_code == 201, resp.text
    payload = resp.json()
    assert payload["success"] is True
    user = payload["data"]["user"]
    assert user["username"] == "alice123"
    assert user["email"] == "a@x.com"
    assert user["has_password"] is True
    assert "secret1" not in resp.text
    assert "password_hash" not in user

    _assert_error(
        api_client.post("/api/auth/login", json={"email": "a@x.com", "password": "wrong11"}),
        401,
        "INVALID_CREDENTIALS",
    )

    data = _login(api_client)
    assert data["token_type"] == "bearer"
    assert data["is_new_user"] is False
    assert data["expires_in"] > 0

    claims = build_token_issuer(get_settings()).verify(data["access_token"])
    assert str(claims.user_id) == user["id"]
    assert claims.username == "alice123"

    me = api_client.get("/api/auth/me", headers=_auth(data["access_token"]))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["id"] == user["id"]


def test_register_conflicts_and_validation(api_client: TestClient):
    assert _register(api_client).status_code == 201

    taken = _assert_error(_register(api_client, email="b@x.com"), 409, "IDENTITY_TAKEN")
    assert taken["field"] == "username"
    taken = _assert_error(_register(api_client, username="alice456", email="A@X.com"), 409, "IDENTITY_TAKEN")
    assert taken["field"] == "email"

    short = _assert_error(_register(api_client, username="ab", email="c@x.com"), 400, "VALIDATION_ERROR")
    assert short["field"] == "username"

    missing = _assert_error(api_client.post("/api/auth/register", json={"username": "bob123"}), 400, "VALIDATION_ERROR")
    assert set(missing["errors"]) == {"email", "password"}


def test_unknown_and_known_email_get_same_forgot_password_message(api_client: TestClient):
    _register(api_client)

    unknown = api_client.post("/api/auth/forgot-password", json={"email": "nobody@x.com"})
    known = api_client.post("/api/auth/forgot-password", json={"email": "a@x.com"})

    assert unknown.status_code == known.status_code == 200
    assert unknown.json()["message"] == known.json()["message"]
    assert unknown.json()["data"]["reset_token"] is None
    assert known.json()["data"]["reset_token"]


def test_password_reset_flow(api_client: TestClient):
    _register(api_client)
    token = api_client.post("/api/auth/forgot-password", json={"email": "a@x.com"}).json()["data"]["reset_token"]

    short = _assert_error(
        api_client.post("/api/auth/reset-password", json={"token": token, "newPassword": "123"}),
        400,
        "VALIDATION_ERROR",
    )
    assert short["field"] == "new_password"

    resp = api_client.post("/api/auth/reset-password", json={"token": token, "newPassword": "newpass1"})
    assert resp.status_code == 200, resp.text

    _assert_error(
        api_client.post("/api/auth/reset-password", json={"token": token, "new_password": "other11"}),
        400,
        "INVALID_OR_EXPIRED_TOKEN",
    )
    _login(api_client, password="newpass1")


def test_forgot_password_hides_token_in_production(api_client: TestClient, monkeypatch: pytest.MonkeyPatch):
    _register(api_client)
    monkeypatch.setenv("CLP_APP_ENV", "production")
    get_settings.cache_clear()

    resp = api_client.post("/api/auth/forgot-password", json={"email": "a@x.com"})

    assert resp.status_code == 200
    assert resp.json()["data"]["reset_token"] is None


def test_refresh_token_flow(api_client: TestClient):
    _register(api_client)
    data = _login(api_client)

    resp = api_client.post("/api/auth/refresh-token", json={"refreshToken": data["refresh_token"]})
    assert resp.status_code == 200, resp.text
    new_access = resp.json()["data"]["access_token"]
    assert api_client.get("/api/auth/me", headers=_auth(new_access)).status_code == 200

    _assert_error(
        api_client.post("/api/auth/refresh-token", json={"refresh_token": data["access_token"]}),
        401,
        "TOKEN_INVALID",
    )
    _assert_error(api_client.get("/api/auth/me", headers=_auth(data["refresh_token"])), 401, "TOKEN_INVALID")


def test_me_distinguishes_missing_expired_and_invalid_tokens(api_client: TestClient):
    user_id = _register(api_client).json()["data"]["user"]["id"]

    _assert_error(api_client.get("/api/auth/me"), 401, "TOKEN_INVALID")
    _assert_error(api_client.get("/api/auth/me", headers=_auth("garbage")), 401, "TOKEN_INVALID")

    expired = build_token_issuer(get_settings()).issue(
        SessionClaims(user_id=user_id, username="alice123", identity_hint="a@x.com", token_type=TokenType.ACCESS),
        -3600,
    )
    _assert_error(api_client.get("/api/auth/me", headers=_auth(expired.token)), 401, "TOKEN_EXPIRED")


def test_phone_login_creates_account_with_username(api_client: TestClient, sender: _RecordingSender):
    resp = api_client.post("/api/auth/phone/send-code", json={"phone": PHONE})
    assert resp.status_code == 200, resp.text
    code = resp.json()["data"]["code"]
    assert sender.sent == [(PHONE, code)]
    assert resp.json()["data"]["expires_in"] == 300

    missing = _assert_error(
        api_client.post("/api/auth/phone/login", json={"phone": PHONE, "code": code}),
        400,
        "VALIDATION_ERROR",
    )
    assert missing["field"] == "username"

    resp = api_client.post("/api/auth/phone/login", json={"phone": PHONE, "code": code, "username": "bob"})
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["is_new_user"] is True
    assert data["user"]["username"] == "bob"
    assert data["user"]["phone"] == PHONE
    assert data["user"]["email"] is None
    assert data["user"]["has_password"] is False

    _assert_error(
        api_client.post("/api/auth/phone/login", json={"phone": PHONE, "code": code}),
        400,
        "INVALID_VERIFICATION_CODE",
    )

    code = api_client.post("/api/auth/phone/send-code", json={"phone": PHONE}).json()["data"]["code"]
    again = api_client.post("/api/auth/phone/login", json={"phone": PHONE, "code": code})
    assert again.json()["data"]["is_new_user"] is False
    assert again.json()["data"]["user"]["id"] == data["user"]["id"]


def test_phone_rejects_malformed_number(api_client: TestClient, sender: _RecordingSender):
    bad = _assert_error(api_client.post("/api/auth/phone/send-code", json={"phone": "12345"}), 400, "VALIDATION_ERROR")
    assert bad["field"] == "phone"
    assert sender.sent == []


def test_phone_user_adds_email_and_password(api_client: TestClient):
    code = api_client.post("/api/auth/phone/send-code", json={"phone": PHONE}).json()["data"]["code"]
    session = api_client.post("/api/auth/phone/login", json={"phone": PHONE, "code": code, "username": "bob"}).json()
    headers = _auth(session["data"]["access_token"])

    _assert_error(
        api_client.put("/api/auth/change-password", json={"newPassword": "secret1"}, headers=headers),
        400,
        "VALIDATION_ERROR",
    )

    resp = api_client.put("/api/auth/profile", json={"email": "bob@x.com", "school": "浙江大学"}, headers=headers)
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["user"]["email_verified"] is False

    resp = api_client.put("/api/auth/change-password", json={"newPassword": "secret1"}, headers=headers)
    assert resp.status_code == 200, resp.text

    data = _login(api_client, email="bob@x.com", password="secret1")
    assert data["user"]["phone"] == PHONE
    assert data["user"]["has_password"] is True


def test_email_verification_flow(api_client: TestClient):
    _register(api_client)
    headers = _auth(_login(api_client)["access_token"])

    resp = api_client.post("/api/auth/email/verification", headers=headers)
    assert resp.status_code == 200, resp.text
    token = resp.json()["data"]["verification_token"]

    assert api_client.post("/api/auth/email/verify", json={"token": token}).status_code == 200
    _assert_error(api_client.post("/api/auth/email/verify", json={"token": token}), 400, "INVALID_OR_EXPIRED_TOKEN")
    assert api_client.get("/api/auth/me", headers=headers).json()["data"]["user"]["email_verified"] is True


def test_wechat_login_and_username_suffix(api_client: TestClient):
    _register(api_client, username="alice", email="a1@x.com")
    _register(api_client, username="alice_1", email="a2@x.com")

    resp = api_client.post("/api/auth/wechat/login", json={"code": "c1", "nickname": "alice"})
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["is_new_user"] is True
    assert data["user"]["username"] == "alice_2"
    assert data["user"]["wechat_bound"] is True
    assert data["user"]["has_password"] is False

    again = api_client.post("/api/auth/wechat/login", json={"code": "c1"}).json()["data"]
    assert again["is_new_user"] is False
    assert again["user"]["id"] == data["user"]["id"]

    _assert_error(
        api_client.put(
            "/api/auth/change-password",
            json={"newPassword": "secret1"},
            headers=_auth(again["access_token"]),
        ),
        400,
        "VALIDATION_ERROR",
    )


def test_school_verification_flow(api_client: TestClient):
    _register(api_client)
    headers = _auth(_login(api_client)["access_token"])

    no_school = _assert_error(
        api_client.post(
            "/api/auth/school/verify",
            json={"studentId": "2024001", "verificationMethod": "student_card"},
            headers=headers,
        ),
        400,
        "VALIDATION_ERROR",
    )
    assert no_school["field"] == "school"

    api_client.put("/api/auth/profile", json={"school": "北京大学"}, headers=headers)
    resp = api_client.post(
        "/api/auth/school/verify",
        json={"studentId": "2024001", "verificationMethod": "student_card"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["data"]["status"] == "pending"

    _assert_error(
        api_client.post(
            "/api/auth/school/verify",
            json={"student_id": "2024001", "verification_method": "manual"},
            headers=headers,
        ),
        409,
        "VERIFICATION_CONFLICT",
    )

    status_view = api_client.get("/api/auth/school/verify", headers=headers).json()["data"]
    assert status_view["school"] == "北京大学"
    assert status_view["student_id"] == "2024001"
    assert status_view["method"] == "student_card"


def test_passwords_are_used_exactly_as_sent(api_client: TestClient):
    trailing = _register(api_client, username="spaces1", email="s1@x.com", password="abc   ")
    assert trailing.status_code == 201, trailing.text
    _login(api_client, email="s1@x.com", password="abc   ")

    assert _register(api_client, username="spaces2", email="s2@x.com", password=" secret1 ").status_code == 201
    _assert_error(
        api_client.post("/api/auth/login", json={"email": "s2@x.com", "password": "secret1"}),
        401,
        "INVALID_CREDENTIALS",
    )
    headers = _auth(_login(api_client, email="s2@x.com", password=" secret1 ")["access_token"])

    _assert_error(
        api_client.put(
            "/api/auth/change-password",
            json={"currentPassword": "secret1", "newPassword": "  next1  "},
            headers=headers,
        ),
        401,
        "INVALID_CREDENTIALS",
    )
    resp = api_client.put(
        "/api/auth/change-password",
        json={"currentPassword": " secret1 ", "newPassword": "  next1  "},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    _login(api_client, email="s2@x.com", password="  next1  ")


def test_identity_fields_are_still_trimmed(api_client: TestClient):
    resp = _register(api_client, username="  alice123  ", email="  A@X.com ")
    assert resp.status_code == 201, resp.text
    assert resp.json()["data"]["user"]["username"] == "alice123"
    assert resp.json()["data"]["user"]["email"] == "a@x.com"
    _login(api_client, email=" a@x.com ")
