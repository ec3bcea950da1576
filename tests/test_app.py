"""End-to-end tests for the assembled FastAPI application."""

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from gatekeeper.app import configure_fastapi_app
from gatekeeper.config import AppConfig

TEST_SECRET_KEY = "app-test-secret-key-that-is-long-enough-for-hs512"  # noqa: S105
TEST_PASSWORD = "Sup3r$ecret"  # noqa: S105

ADMIN = {"username": "oak", "password": TEST_PASSWORD}
PLAYER = {"username": "ash", "email": "ash@example.com", "password": TEST_PASSWORD}


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Configuration with a throwaway database and a bootstrap admin."""
    return AppConfig(
        database_path=str(tmp_path / "data" / "gatekeeper.db"),
        logging_level="DEBUG",
        root_path="",
        secret_key=TEST_SECRET_KEY,
        algorithm="HS512",
        token_lifetime_minutes=60,
        token_issuer="gatekeeper",
        token_audience="game-client",
        bcrypt_rounds=4,
        flag_cache_ttl_seconds=30,
        audit_queue_size=100,
        audit_shutdown_period=5,
        admin_username="oak",
        admin_email="oak@example.com",
        admin_password=TEST_PASSWORD,
    )


@pytest.fixture
def client(config: AppConfig) -> Generator[TestClient]:
    """Client running the full application lifespan."""
    with TestClient(configure_fastapi_app(config)) as test_client:
        yield test_client


def _headers(client: TestClient, credentials: dict[str, str]) -> dict[str, str]:
    response = client.post("/auth/login", data=credentials)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    """Bearer header for the bootstrap admin."""
    return _headers(client, ADMIN)


@pytest.fixture
def player_headers(client: TestClient) -> dict[str, str]:
    """Bearer header for a freshly registered user."""
    response = client.post("/auth/register", data=PLAYER)
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


class TestService:
    """Service level routes."""

    def test_root(self, client: TestClient) -> None:
        """The root route names the service."""
        assert client.get("/").json() == "Gatekeeper API"

    def test_health(self, client: TestClient) -> None:
        """Health reports users, the audit queue and rollouts."""
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["active_users"] == 1
        assert body["audit_dropped"] == 0
        assert body["active_rollouts"] == []

    def test_database_directory_created(self, config: AppConfig) -> None:
        """A missing database directory is created."""
        configure_fastapi_app(config)

        assert Path(config.database_path).parent.is_dir()


class TestAuthRoutes:
    """Registration, login and account routes."""

    def test_register_and_account(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """A registered user can read their account and scopes."""
        account = client.get("/auth/account", headers=player_headers).json()
        scopes = client.get("/auth/account/scopes", headers=player_headers).json()

        assert account["username"] == "ash"
        assert account["role"] == "user"
        assert scopes["role"] == "user"
        assert "feature.manage" not in scopes["scopes"]

    def test_register_duplicate(
        self,
        client: TestClient,
        player_headers: dict[str, str],  # noqa: ARG002
    ) -> None:
        """A taken username is a conflict."""
        response = client.post("/auth/register", data=PLAYER)

        assert response.status_code == 409

    def test_register_weak_password(self, client: TestClient) -> None:
        """A weak password is a 400 naming the field."""
        response = client.post(
            "/auth/register",
            data={**PLAYER, "password": "weak"},
        )

        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "password"

    def test_login_wrong_password(self, client: TestClient) -> None:
        """Wrong passwords are a 401."""
        response = client.post(
            "/auth/login",
            data={"username": "oak", "password": "Wr0ng$ecret"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    def test_token_missing(self, client: TestClient) -> None:
        """Protected routes need a bearer token."""
        response = client.get("/auth/account")

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_MISSING"

    def test_token_invalid(self, client: TestClient) -> None:
        """Forged tokens are rejected."""
        response = client.get(
            "/auth/account",
            headers={"Authorization": "Bearer not.a.token"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "TOKEN_INVALID"

    def test_logout(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """Logout succeeds for a signed-in user."""
        response = client.post("/auth/logout", headers=player_headers)

        assert response.status_code == 200

    def test_change_password(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """The new password is used for later logins."""
        response = client.patch(
            "/auth/account/password",
            data={"current_password": TEST_PASSWORD, "new_password": "N3w$ecret!"},
            headers=player_headers,
        )

        assert response.status_code == 200
        _headers(client, {"username": "ash", "password": "N3w$ecret!"})

    def test_role_change_applies_to_existing_token(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        player_headers: dict[str, str],
    ) -> None:
        """Role changes take effect without a new login."""
        player_id = client.get("/auth/account", headers=player_headers).json()["id"]

        response = client.patch(
            f"/auth/users/{player_id}/role",
            data={"role": "helper"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["role"] == "helper"
        scopes = client.get("/auth/account/scopes", headers=player_headers).json()
        assert scopes["role"] == "helper"
        assert "player.mute" in scopes["scopes"]

    def test_unknown_role(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Role labels are validated."""
        response = client.patch(
            "/auth/users/1/role",
            data={"role": "overlord"},
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_deactivated_token_rejected(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        player_headers: dict[str, str],
    ) -> None:
        """Deactivating an account invalidates its tokens."""
        player_id = client.get("/auth/account", headers=player_headers).json()["id"]

        response = client.patch(
            f"/auth/users/{player_id}/active",
            data={"active": "false"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        account = client.get("/auth/account", headers=player_headers)
        assert account.status_code == 401
        assert account.json()["detail"]["code"] == "TOKEN_INVALID"

    def test_admin_cannot_deactivate_self(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Rank rule refusals carry the permission error code."""
        response = client.patch(
            "/auth/users/1/active",
            data={"active": "false"},
            headers=admin_headers,
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "INSUFFICIENT_PERMISSIONS"

    def test_user_cannot_manage_accounts(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """Account administration needs the admin scope."""
        response = client.patch(
            "/auth/users/1/active",
            data={"active": "false"},
            headers=player_headers,
        )

        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "INSUFFICIENT_PERMISSIONS"


class TestFlagRoutes:
    """Flag administration and evaluation routes."""

    def test_list_requires_admin_scope(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """Users cannot read flag administration data."""
        response = client.get("/flags", headers=player_headers)

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["user_role"] == "user"
        assert detail["required_scope"] == "admin.access"

    def test_list_and_get(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Default flags are seeded and start disabled."""
        flags = client.get("/flags", headers=admin_headers).json()
        phase = client.get(
            "/flags",
            params={"phase": "Phase 1"},
            headers=admin_headers,
        ).json()
        flag = client.get("/flags/design_system", headers=admin_headers).json()

        assert "authz_unified" in {item["name"] for item in flags}
        assert {item["phase"] for item in phase} == {"Phase 1"}
        assert flag["enabled"] is False
        assert flag["canary_roles"] == ["admin"]

    def test_unknown_flag(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Unknown flags are a 404."""
        assert client.get("/flags/nope", headers=admin_headers).status_code == 404
        response = client.post("/flags/nope/enable", headers=admin_headers)
        assert response.status_code == 404

    def test_enable_evaluate_disable(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        player_headers: dict[str, str],
    ) -> None:
        """Enabling a flag turns it on for users until it is disabled."""
        enabled = client.post(
            "/flags/design_system/enable",
            json={"rollout_percent": 100},
            headers=admin_headers,
        ).json()
        on = client.get("/flags/design_system/evaluate", headers=player_headers)

        assert enabled["enabled"] is True
        assert enabled["rollout_percent"] == 100
        assert enabled["updated_by"] == 1
        assert on.json() == {
            "flag": "design_system",
            "enabled": True,
            "reason": "full_rollout",
            "dependency": None,
        }

        client.post("/flags/design_system/disable", headers=admin_headers)
        off = client.get("/flags/design_system/evaluate", headers=player_headers)

        assert off.json()["enabled"] is False
        assert off.json()["reason"] == "disabled"

    def test_enable_out_of_range(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Percentages above 100 are rejected before reaching the store."""
        response = client.post(
            "/flags/design_system/enable",
            json={"rollout_percent": 101},
            headers=admin_headers,
        )

        assert response.status_code == 422

    def test_evaluate_unknown_flag(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """Unknown flags evaluate to off."""
        body = client.get("/flags/nope/evaluate", headers=player_headers).json()

        assert body["enabled"] is False
        assert body["reason"] == "unknown_flag"

    def test_statistics(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Statistics include phases, cache usage and rollouts."""
        body = client.get("/flags/statistics", headers=admin_headers).json()

        assert "phases" in body
        assert "cache" in body
        assert body["active_rollouts"] == []

    def test_gradual_rollout_lifecycle(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """One rollout per flag, which can be cancelled once."""
        url = "/flags/design_system/rollout"

        started = client.post(url, json={"step_duration": 3600}, headers=admin_headers)
        again = client.post(url, json={"step_duration": 3600}, headers=admin_headers)
        cancelled = client.delete(url, headers=admin_headers)
        missing = client.delete(url, headers=admin_headers)

        assert started.status_code == 202
        assert started.json()["status"] == "started"
        assert again.status_code == 409
        assert cancelled.status_code == 200
        assert missing.status_code == 404

    def test_disable_cancels_rollout(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Disabling a flag ends its running rollout."""
        started = client.post(
            "/flags/design_system/rollout",
            json={"step_duration": 3600},
            headers=admin_headers,
        )
        disabled = client.post("/flags/design_system/disable", headers=admin_headers)

        assert started.status_code == 202
        assert disabled.json()["enabled"] is False
        assert disabled.json()["rollout_percent"] == 0
        assert client.get("/health").json()["active_rollouts"] == []

    def test_rollout_unknown_flag(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Rollouts need an existing flag."""
        response = client.post("/flags/nope/rollout", json={}, headers=admin_headers)

        assert response.status_code == 404

    def test_rollout_bad_step(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """Step sizes must be positive."""
        response = client.post(
            "/flags/design_system/rollout",
            json={"step_percent": 0},
            headers=admin_headers,
        )

        assert response.status_code == 422


class TestAuditRoutes:
    """Audit trail access."""

    def test_admin_reads_events(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
        player_headers: dict[str, str],  # noqa: ARG002
    ) -> None:
        """Registrations show up in the audit trail."""
        response = client.get(
            "/audit/events",
            params={"kind": "user_registered"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        events = response.json()
        assert [event["details"]["username"] for event in events] == ["ash"]

    def test_user_cannot_read_events(
        self,
        client: TestClient,
        player_headers: dict[str, str],
    ) -> None:
        """Reading the audit trail needs the audit scope."""
        response = client.get("/audit/events", headers=player_headers)

        assert response.status_code == 403

    def test_limit_bounds(
        self,
        client: TestClient,
        admin_headers: dict[str, str],
    ) -> None:
        """The page size is bounded."""
        response = client.get(
            "/audit/events",
            params={"limit": 501},
            headers=admin_headers,
        )

        assert response.status_code == 422
