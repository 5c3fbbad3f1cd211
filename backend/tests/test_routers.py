"""
API tests

Drives the HTTP surface through fastapi.testclient.TestClient. The
application builds its own service container against a temporary SQLite
database; the Plaid and Dwolla clients are swapped for test doubles once
it has started. The client talks https so the secure session cookie is
sent back.

Run with: pytest tests/test_routers.py -v
"""

import pytest
from fastapi.testclient import TestClient

from services.dwolla_client import DwollaAPIError
from server import create_app

LINK_FAILED = "Unable to link bank account. Please try again."


@pytest.fixture
def app(settings):
    return create_app(settings=settings)


@pytest.fixture
def client(app, plaid, dwolla):
    with TestClient(app, base_url="https://testserver") as client:
        app.state.services.plaid = plaid
        app.state.services.dwolla = dwolla
        yield client


@pytest.fixture
def sign_up_payload(profile_data):
    return dict(profile_data, password="correct-horse")


def sign_up(client, payload):
    response = client.post("/api/auth/sign-up", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:

    def test_root(self, client):
        response = client.get("/api/")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["database"]["status"] == "connected"
        assert body["checks"]["payment_rail"]["status"] == "configured"

    def test_liveness(self, client):
        assert client.get("/api/health/live").json()["status"] == "alive"

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/health/live", headers={"X-Request-ID": "req-abc"})

        assert response.headers["X-Request-ID"] == "req-abc"
        assert "X-Process-Time" in response.headers


class TestAuthRoutes:

    def test_sign_up_sets_session_cookie(self, client, sign_up_payload, settings):
        response = client.post("/api/auth/sign-up", json=sign_up_payload)

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "ada@example.com"
        assert body["dwolla_customer_url"].startswith("https://api-sandbox.dwolla.com/customers/")
        assert "ssn" not in body
        assert "password_hash" not in body

        cookie = response.headers["set-cookie"]
        assert cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=")
        assert "HttpOnly" in cookie
        assert "Secure" in cookie
        assert "SameSite=strict" in cookie
        assert "Path=/" in cookie

    def test_me_requires_session(self, client, sign_up_payload):
        assert client.get("/api/auth/me").status_code == 401

        identity = sign_up(client, sign_up_payload)

        response = client.get("/api/auth/me")
        assert response.status_code == 200
        assert response.json()["id"] == identity["id"]

    def test_duplicate_sign_up(self, client, sign_up_payload):
        sign_up(client, sign_up_payload)

        response = client.post("/api/auth/sign-up", json=sign_up_payload)

        assert response.status_code == 409
        assert response.json()["detail"]["message"] == "Unable to create your account. Please try again."

    def test_invalid_sign_up_does_not_echo_values(self, client, sign_up_payload, dwolla):
        payload = dict(sign_up_payload, state="New York", ssn="12")

        response = client.post("/api/auth/sign-up", json=payload)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert set(detail["parameters"]) == {"state", "ssn"}
        assert "correct-horse" not in response.text
        dwolla.create_customer.assert_not_awaited()

    def test_provisioning_failure(self, client, sign_up_payload, dwolla):
        dwolla.create_customer.side_effect = DwollaAPIError("Dwolla returned 400", status_code=400)

        response = client.post("/api/auth/sign-up", json=sign_up_payload)

        assert response.status_code == 502
        assert "set-cookie" not in response.headers
        assert client.post("/api/auth/sign-in", json={
            "email": sign_up_payload["email"],
            "password": sign_up_payload["password"],
        }).status_code == 401

    def test_sign_in(self, client, sign_up_payload):
        sign_up(client, sign_up_payload)
        client.cookies.clear()

        response = client.post("/api/auth/sign-in", json={"email": "ADA@example.com", "password": "correct-horse"})

        assert response.status_code == 200
        assert "set-cookie" in response.headers
        assert client.get("/api/auth/me").status_code == 200

    def test_failed_sign_in_sets_no_cookie(self, client, sign_up_payload):
        sign_up(client, sign_up_payload)
        client.cookies.clear()

        wrong_password = client.post("/api/auth/sign-in", json={"email": "ada@example.com", "password": "wrong-horse"})
        unknown_email = client.post("/api/auth/sign-in", json={"email": "bob@example.com", "password": "correct-horse"})

        assert wrong_password.status_code == 401
        assert unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert "set-cookie" not in wrong_password.headers

    def test_sign_out(self, client, sign_up_payload, settings):
        sign_up(client, sign_up_payload)
        secret = client.cookies.get(settings.SESSION_COOKIE_NAME)

        response = client.post("/api/auth/sign-out")

        assert response.status_code == 204
        assert settings.SESSION_COOKIE_NAME not in client.cookies
        assert client.get("/api/auth/me").status_code == 401
        # The old secret no longer opens a session either
        replay = client.get("/api/auth/me", headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}={secret}"})
        assert replay.status_code == 401


class TestBankRoutes:

    def test_routes_require_session(self, client):
        assert client.post("/api/banks/link-token").status_code == 401
        assert client.post("/api/banks/exchange", json={"public_token": "x"}).status_code == 401
        assert client.get("/api/banks").status_code == 401
        assert client.get("/api/dashboard").status_code == 401

    def test_link_token(self, client, sign_up_payload, plaid):
        identity = sign_up(client, sign_up_payload)

        response = client.post("/api/banks/link-token")

        assert response.status_code == 200
        assert response.json() == {"link_token": "link-sandbox-token"}
        _, request = plaid.calls[-1]
        assert request["client_user_id"] == identity["id"]

    def test_link_token_unavailable(self, client, sign_up_payload, plaid):
        sign_up(client, sign_up_payload)
        plaid.failures.add("link_token_create")

        response = client.post("/api/banks/link-token")

        assert response.status_code == 502
        assert response.json()["detail"]["message"] == LINK_FAILED

    def test_exchange_and_read_back(self, client, sign_up_payload, plaid):
        identity = sign_up(client, sign_up_payload)

        response = client.post("/api/banks/exchange", json={"public_token": plaid.issue_public_token()})

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["public_token_exchange"] == "complete"
        assert len(body["accounts"]) == 1
        account = body["accounts"][0]
        assert account["account_id"] == "acc_checking_001"
        assert "access_token" not in response.text

        listed = client.get("/api/banks").json()
        assert [a["id"] for a in listed] == [account["id"]]

        fetched = client.get(f"/api/banks/{account['shareable_id']}")
        assert fetched.status_code == 200
        assert fetched.json()["id"] == account["id"]

        dashboard = client.get("/api/dashboard").json()
        assert dashboard["user"]["id"] == identity["id"]
        assert dashboard["total_banks"] == 1
        assert dashboard["total_current_balance"] == 110.0

    def test_spent_public_token(self, client, sign_up_payload, plaid):
        sign_up(client, sign_up_payload)
        public_token = plaid.issue_public_token()
        assert client.post("/api/banks/exchange", json={"public_token": public_token}).status_code == 200

        response = client.post("/api/banks/exchange", json={"public_token": public_token})

        assert response.status_code == 502
        assert response.json()["detail"]["message"] == LINK_FAILED
        assert len(client.get("/api/banks").json()) == 1

    def test_funding_source_failure_stores_nothing(self, client, sign_up_payload, plaid, dwolla):
        sign_up(client, sign_up_payload)
        dwolla.create_funding_source.side_effect = DwollaAPIError("Dwolla returned 400", status_code=400)
        public_token = plaid.issue_public_token()

        response = client.post("/api/banks/exchange", json={"public_token": public_token})

        assert response.status_code == 502
        assert response.json()["detail"]["message"] == LINK_FAILED
        assert client.get("/api/banks").json() == []

        retry = client.post("/api/banks/exchange", json={"public_token": public_token})

        assert retry.status_code == 502
        assert retry.json()["detail"]["message"] == LINK_FAILED
        assert plaid.called("accounts_get") == 1
        assert dwolla.create_funding_source.await_count == 1
        assert client.get("/api/banks").json() == []

    def test_empty_public_token_rejected(self, client, sign_up_payload):
        sign_up(client, sign_up_payload)

        response = client.post("/api/banks/exchange", json={"public_token": ""})

        assert response.status_code == 400

    def test_other_users_account_is_not_found(self, client, sign_up_payload, plaid):
        sign_up(client, sign_up_payload)
        account = client.post(
            "/api/banks/exchange", json={"public_token": plaid.issue_public_token()}
        ).json()["accounts"][0]
        client.post("/api/auth/sign-out")

        sign_up(client, dict(sign_up_payload, email="grace@example.com"))

        assert client.get(f"/api/banks/{account['shareable_id']}").status_code == 404
        assert client.get("/api/banks").json() == []
