import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
import jwt

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from conciliapp.actors import Actor, Role
from conciliapp.directory import StaticDirectorySource, parse_directory
from conciliapp.main import create_app
from conciliapp.services import build_services

DIRECTORY_PAYLOAD = {
    "reviewers": [
        {"identity": "ana@example.com", "branches": ["Caracas"]},
        {"identity": "beto@example.com", "branches": ["Caracas"]},
        {"identity": "maria@example.com", "branches": ["Valencia"]},
        {"identity": "luis@example.com", "branches": ["ALL"]},
    ],
    "sellers": [
        {"code": "V001", "name": "Pedro Perez", "branch": "Caracas", "owner": "pedro@example.com"},
        {"code": "V002", "name": "Rosa Diaz", "branch": "Valencia", "owner": "rosa@example.com"},
        {"code": "V003", "name": "Juan Sin Sede", "branch": "", "owner": "juan@example.com"},
    ],
    "admins": ["jefe@example.com"],
}


class FrozenClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def submission(**overrides) -> dict:
    payload = {
        "vendor_code": "V001",
        "client_code": "C-100",
        "client_name": "Ferreteria El Sol",
        "invoice_refs": "F-1001",
        "amount": "150.00",
        "payment_method": "Transferencia",
        "issuing_bank": "Mercantil",
        "receiving_bank": "Banesco",
        "reference_number": "REF-0001",
        "collection_type": "Contado",
        "payment_date": "2026-03-14",
        "observations": "",
    }
    payload.update(overrides)
    return payload


def seller() -> Actor:
    return Actor.of("pedro@example.com", Role.SELLER)


def analyst(identity: str = "ana@example.com") -> Actor:
    return Actor.of(identity, Role.ANALYST)


def admin() -> Actor:
    return Actor.of("jefe@example.com", Role.ADMIN)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def directory_source() -> StaticDirectorySource:
    return StaticDirectorySource(parse_directory(DIRECTORY_PAYLOAD))


@pytest.fixture
def services(clock: FrozenClock, directory_source: StaticDirectorySource):
    return build_services(
        {"CONCILIA_ASSIGNMENT_LOCK_WAIT_SECONDS": "0"},
        directory_source=directory_source,
        now_fn=clock,
        timezone=timezone.utc,
    )


def _issue_token(*, secret: str, subject: str, role: str | None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "exp": int((now + timedelta(minutes=30)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    """Signs a bearer token per request from the x-user-id / x-user-role test headers."""

    def __init__(self, client: TestClient, *, jwt_secret: str):
        self._client = client
        self._jwt_secret = jwt_secret

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        subject = headers.pop("x-user-id", "pedro@example.com")
        role = headers.pop("x-user-role", None)
        if url.startswith("/api/v1/") and not url.startswith("/api/v1/internal/"):
            if "Authorization" not in headers:
                token = _issue_token(secret=self._jwt_secret, subject=subject, role=role)
                headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


@pytest.fixture(autouse=True)
def jwt_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", "jwt_test_secret")
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,exp")
    monkeypatch.delenv("CONCILIA_REQUIRE_TRUESTACK", raising=False)
    yield


@pytest.fixture
def client(services) -> AuthenticatedClient:
    app = create_app(services)
    base = TestClient(app)
    return AuthenticatedClient(base, jwt_secret="jwt_test_secret")
