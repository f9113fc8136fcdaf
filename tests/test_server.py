"""Tests for the TokenReview HTTP handler."""

import asyncio
import json
from unittest.mock import Mock, patch

import httpx
import pytest
from ldap3.core.exceptions import LDAPSocketOpenError
from starlette.testclient import TestClient
from structlog.testing import capture_logs

from ldap_authn.config import AuthnConfig
from ldap_authn.errors import DirectoryTransportError
from ldap_authn.review import DirectoryIdentity
from ldap_authn.server import create_app

ALICE = DirectoryIdentity(username="alice", uid="alice", groups=["eng", "sre"])


def review_body(token: str = "alice:secret123") -> dict:
    return {
        "apiVersion": "authentication.k8s.io/v1",
        "kind": "TokenReview",
        "metadata": {"creationTimestamp": None},
        "spec": {"token": token},
    }


class StaticValidator:
    """Validator that knows a single credential."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def validate(self, principal: str, secret: str) -> DirectoryIdentity | None:
        self.calls.append((principal, secret))
        if (principal, secret) == ("alice", "secret123"):
            return ALICE
        return None


@pytest.fixture
def config() -> AuthnConfig:
    return AuthnConfig(ldap_url="ldap://ldap.example.com", search_base="dc=example,dc=com")


@pytest.fixture
def validator() -> StaticValidator:
    return StaticValidator()


@pytest.fixture
def client(config: AuthnConfig, validator: StaticValidator) -> TestClient:
    return TestClient(create_app(config, validator=validator))


class TestReviewEndpoint:
    """Test the POST / review endpoint."""

    def test_authenticated(self, client: TestClient, validator: StaticValidator) -> None:
        response = client.post("/", json=review_body())

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        body = response.json()
        assert body["kind"] == "TokenReview"
        assert body["metadata"] == {"creationTimestamp": None}
        assert body["status"] == {
            "authenticated": True,
            "user": {"username": "alice", "uid": "alice", "groups": ["eng", "sre"]},
        }
        assert validator.calls == [("alice", "secret123")]

    def test_not_authenticated_is_success(self, client: TestClient) -> None:
        response = client.post("/", json=review_body("alice:wrongpass"))

        assert response.status_code == 200
        assert response.json()["status"] == {"authenticated": False, "user": {}}
        assert "wrongpass" not in response.text

    def test_split_on_first_separator(
        self, client: TestClient, validator: StaticValidator
    ) -> None:
        client.post("/", json=review_body("alice:se:cret"))

        assert validator.calls == [("alice", "se:cret")]

    def test_invalid_json(self, client: TestClient, validator: StaticValidator) -> None:
        response = client.post("/", content=b"not json")

        assert response.status_code == 500
        assert response.text.startswith("Error: ")
        assert validator.calls == []

    def test_malformed_token(self, client: TestClient, validator: StaticValidator) -> None:
        response = client.post("/", json=review_body("nocolontoken"))

        assert response.status_code == 500
        assert response.text == "Error: badly formatted token\n"
        assert "nocolontoken" not in response.text
        assert validator.calls == []

    def test_directory_error(self, config: AuthnConfig) -> None:
        validator = Mock()
        validator.validate.side_effect = DirectoryTransportError("server busy (51)")
        client = TestClient(create_app(config, validator=validator))

        response = client.post("/", json=review_body())

        assert response.status_code == 500
        assert response.text == "Error: failed LDAP Search request\n"
        assert "busy" not in response.text

    def test_unexpected_error(self, config: AuthnConfig) -> None:
        validator = Mock()
        validator.validate.side_effect = RuntimeError("boom")
        client = TestClient(create_app(config, validator=validator))

        response = client.post("/", json=review_body())

        assert response.status_code == 500
        assert response.text == "Error: internal error\n"

    def test_get_not_allowed(self, client: TestClient) -> None:
        assert client.get("/").status_code == 405

    def test_unreachable_directory(self, config: AuthnConfig) -> None:
        """A connection failure is a 500 that never exposes the secret."""
        client = TestClient(create_app(config))

        with (
            patch("ldap_authn.directory.Server"),
            patch("ldap_authn.directory.Connection") as mock_connection,
            capture_logs() as logs,
        ):
            mock_connection.return_value.open.side_effect = LDAPSocketOpenError(
                "socket connection error"
            )
            response = client.post("/", json=review_body("alice:s3cr3t-value"))

        assert response.status_code == 500
        assert response.text
        assert "s3cr3t-value" not in response.text
        assert logs
        assert "s3cr3t-value" not in json.dumps(logs, default=str)
        failure = next(e for e in logs if e["event"] == "Token review failed")
        assert failure["stage"] == "validate"
        assert failure["error_type"] == "DirectoryConnectError"
        assert failure["principal"] == "alice"

    def test_success_logs_principal_not_secret(self, client: TestClient) -> None:
        with capture_logs() as logs:
            client.post("/", json=review_body())

        completed = next(e for e in logs if e["event"] == "Token review completed")
        assert completed["principal"] == "alice"
        assert completed["authenticated"] is True
        assert "secret123" not in json.dumps(logs, default=str)


class TestHealthEndpoint:
    """Test the health endpoint."""

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["bind_mode"] == "caller"
        assert body["uptime_seconds"] >= 0


class TestConcurrency:
    """Test that reviews are handled independently."""

    @pytest.mark.asyncio
    async def test_concurrent_identical_reviews(
        self, config: AuthnConfig, validator: StaticValidator
    ) -> None:
        app = create_app(config, validator=validator)
        transport = httpx.ASGITransport(app=app)

        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            first, second = await asyncio.gather(
                client.post("/", json=review_body()),
                client.post("/", json=review_body()),
            )

        assert first.status_code == second.status_code == 200
        assert first.json()["status"] == second.json()["status"]
        assert first.json()["status"]["authenticated"] is True
        assert len(validator.calls) == 2
