"""HTTP tests for /api/v1/auth, /api/v1/users and the resource-access dependency."""

import unittest
from typing import Annotated

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.v1.auth import get_token_service, require_resource_access
from app.core import security
from app.core.database import get_db
from app.core.rate_limit import limiter
from app.core.security import hash_password
from app.main import app
from app.models import Base, User
from app.schemas.auth import Identity
from app.scripts.generate_keys import generate_keypair
from app.services.tokens import KeyMaterial, TokenService

PREFIX = "/api/v1"


class ApiTestCase(unittest.TestCase):
    """Runs the real app against in-memory SQLite and an ephemeral RS256 keypair."""

    @classmethod
    def setUpClass(cls) -> None:
        private_pem, public_pem = generate_keypair()
        cls.tokens = TokenService(
            KeyMaterial(private_key=private_pem, public_key=public_pem),
            issuer="nodeguard-backend",
            audience="nodeguard-frontend",
        )
        cls.password_hash = hash_password("secret123", rounds=4)

    def setUp(self) -> None:
        limiter.reset()
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        with self.Session() as db:
            db.add_all(
                [
                    User(username="root", password_hash=self.password_hash, role="admin"),
                    User(
                        username="alice",
                        password_hash=self.password_hash,
                        role="client",
                        assigned_resources=["dev-1"],
                    ),
                ]
            )
            db.commit()

        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        self.app = self._target_app()
        self.app.dependency_overrides[get_db] = override_get_db
        self.app.dependency_overrides[get_token_service] = lambda: self.tokens
        self.client = TestClient(self.app)

    def tearDown(self) -> None:
        self.app.dependency_overrides.clear()

    def _target_app(self) -> FastAPI:
        return app

    def _login(self, username: str = "alice", password: str = "secret123") -> dict:
        response = self.client.post(f"{PREFIX}/auth/login", json={"username": username, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    @staticmethod
    def _bearer(body: dict) -> dict[str, str]:
        return {"Authorization": f"Bearer {body['access_token']}"}


class TestLoginEndpoint(ApiTestCase):
    def test_login_returns_pair_and_user(self) -> None:
        body = self._login()
        self.assertEqual(body["token_type"], "bearer")
        self.assertEqual(body["expires_in"], 900)
        self.assertEqual(len(body["refresh_token"]), 128)
        self.assertEqual(body["user"]["username"], "alice")
        self.assertEqual(body["user"]["assigned_resources"], ["dev-1"])

    def test_bad_credentials_are_uniform_401(self) -> None:
        wrong = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice", "password": "nope"})
        unknown = self.client.post(f"{PREFIX}/auth/login", json={"username": "ghost", "password": "nope"})
        self.assertEqual(wrong.status_code, 401)
        self.assertEqual(unknown.status_code, 401)
        self.assertEqual(wrong.json(), unknown.json())
        self.assertEqual(wrong.headers.get("www-authenticate"), "Bearer")

    def test_missing_fields_are_rejected(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice"})
        self.assertEqual(response.status_code, 422)

    def test_blank_username_is_bad_request(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/login", json={"username": "   ", "password": "secret123"})
        self.assertEqual(response.status_code, 400)

    def test_request_id_is_echoed(self) -> None:
        response = self.client.post(
            f"{PREFIX}/auth/login",
            json={"username": "alice", "password": "secret123"},
            headers={"X-Request-Id": "req-123"},
        )
        self.assertEqual(response.headers["x-request-id"], "req-123")


class TestLoginRateLimit(ApiTestCase):
    """/auth/login allows ten attempts per client IP in a five-minute window."""

    def test_eleventh_attempt_is_throttled(self) -> None:
        for _ in range(10):
            response = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice", "password": "nope"})
            self.assertEqual(response.status_code, 401)
        throttled = self.client.post(f"{PREFIX}/auth/login", json={"username": "alice", "password": "secret123"})
        self.assertEqual(throttled.status_code, 429)
        self.assertIn("Retry-After", throttled.headers)

    def test_other_endpoints_are_not_throttled(self) -> None:
        login = self._login()
        for _ in range(12):
            self.assertEqual(self.client.get(f"{PREFIX}/auth/me", headers=self._bearer(login)).status_code, 200)


class TestStartup(unittest.TestCase):
    def test_dummy_digest_is_computed_at_startup(self) -> None:
        security._dummy_hash.cache_clear()
        with TestClient(app):
            self.assertEqual(security._dummy_hash.cache_info().currsize, 1)


class TestRefreshEndpoint(ApiTestCase):
    def test_refresh_then_replay(self) -> None:
        login = self._login()
        first = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": login["refresh_token"]})
        self.assertEqual(first.status_code, 200, first.text)
        self.assertNotEqual(first.json()["refresh_token"], login["refresh_token"])

        replay = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": login["refresh_token"]})
        self.assertEqual(replay.status_code, 401)

        again = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": first.json()["refresh_token"]})
        self.assertEqual(again.status_code, 200)

    def test_unknown_token(self) -> None:
        response = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": "0" * 128})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid or expired refresh token")


class TestMeAndLogout(ApiTestCase):
    def test_me_requires_token(self) -> None:
        self.assertEqual(self.client.get(f"{PREFIX}/auth/me").status_code, 401)
        bad = self.client.get(f"{PREFIX}/auth/me", headers={"Authorization": "Bearer nope"})
        self.assertEqual(bad.status_code, 401)

    def test_me_returns_identity(self) -> None:
        login = self._login()
        response = self.client.get(f"{PREFIX}/auth/me", headers=self._bearer(login))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "alice")
        self.assertEqual(response.json()["role"], "client")

    def test_logout_is_idempotent(self) -> None:
        login = self._login()
        for _ in range(2):
            response = self.client.post(
                f"{PREFIX}/auth/logout",
                json={"refresh_token": login["refresh_token"]},
                headers=self._bearer(login),
            )
            self.assertEqual(response.status_code, 200)
            self.assertTrue(response.json()["success"])
        refresh = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": login["refresh_token"]})
        self.assertEqual(refresh.status_code, 401)

    def test_logout_all_counts_chains(self) -> None:
        first = self._login()
        self._login()
        response = self.client.post(f"{PREFIX}/auth/logout-all", headers=self._bearer(first))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["revoked_count"], 2)


class TestUsersEndpoint(ApiTestCase):
    def test_client_is_forbidden(self) -> None:
        login = self._login()
        response = self.client.get(f"{PREFIX}/users", headers=self._bearer(login))
        self.assertEqual(response.status_code, 403)

    def test_admin_creates_user_and_conflicts_on_duplicate(self) -> None:
        admin = self._login("root")
        payload = {"username": "Carol", "password": "longenough", "assigned_resources": ["dev-3"]}
        created = self.client.post(f"{PREFIX}/users", json=payload, headers=self._bearer(admin))
        self.assertEqual(created.status_code, 201, created.text)
        self.assertEqual(created.json()["username"], "carol")
        duplicate = self.client.post(f"{PREFIX}/users", json=payload, headers=self._bearer(admin))
        self.assertEqual(duplicate.status_code, 409)

        listed = self.client.get(f"{PREFIX}/users", headers=self._bearer(admin))
        self.assertEqual(
            sorted(u["username"] for u in listed.json()["users"]),
            ["alice", "carol", "root"],
        )

    def test_update_reaches_token_after_refresh(self) -> None:
        admin = self._login("root")
        alice = self._login()
        alice_id = alice["user"]["id"]
        updated = self.client.put(
            f"{PREFIX}/users/{alice_id}",
            json={"assigned_resources": ["dev-1", "dev-2"]},
            headers=self._bearer(admin),
        )
        self.assertEqual(updated.status_code, 200)
        refreshed = self.client.post(f"{PREFIX}/auth/refresh", json={"refresh_token": alice["refresh_token"]})
        me = self.client.get(f"{PREFIX}/auth/me", headers=self._bearer(refreshed.json()))
        self.assertEqual(me.json()["assigned_resources"], ["dev-1", "dev-2"])

    def test_me_shows_update_before_refresh(self) -> None:
        admin = self._login("root")
        alice = self._login()
        self.client.put(
            f"{PREFIX}/users/{alice['user']['id']}",
            json={"assigned_resources": ["dev-5"]},
            headers=self._bearer(admin),
        )
        me = self.client.get(f"{PREFIX}/auth/me", headers=self._bearer(alice))
        self.assertEqual(me.json()["assigned_resources"], ["dev-5"])

    def test_update_unknown_user(self) -> None:
        admin = self._login("root")
        response = self.client.put(f"{PREFIX}/users/999", json={"role": "admin"}, headers=self._bearer(admin))
        self.assertEqual(response.status_code, 404)


class TestHealth(ApiTestCase):
    def test_reports_signing_algorithm(self) -> None:
        response = self.client.get(f"{PREFIX}/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"], "connected")
        self.assertEqual(response.json()["signing_algorithm"], "RS256")


class TestResourceAccess(ApiTestCase):
    """require_resource_access guards any route with a {resource_id} path parameter."""

    def _target_app(self) -> FastAPI:
        devices = FastAPI()
        devices.state.limiter = limiter

        @devices.get("/devices/{resource_id}")
        def read_device(
            resource_id: str,
            user: Annotated[Identity, Depends(require_resource_access)],
        ) -> dict[str, str]:
            return {"resource_id": resource_id, "username": user.username}

        devices.include_router(app.router)
        return devices

    def test_client_sees_only_assigned_devices(self) -> None:
        headers = self._bearer(self._login())
        self.assertEqual(self.client.get("/devices/dev-1", headers=headers).status_code, 200)
        denied = self.client.get("/devices/dev-2", headers=headers)
        self.assertEqual(denied.status_code, 403)
        self.assertEqual(denied.json()["detail"], "You do not have access to this device")

    def test_admin_sees_everything(self) -> None:
        headers = self._bearer(self._login("root"))
        self.assertEqual(self.client.get("/devices/anything", headers=headers).status_code, 200)

    def test_anonymous_is_unauthorized(self) -> None:
        self.assertEqual(self.client.get("/devices/dev-1").status_code, 401)


if __name__ == "__main__":
    unittest.main()
