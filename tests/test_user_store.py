"""Tests for the User model invariants and app.services.user_store."""

import unittest

from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    verify_password,
)
from app.models import Base, User
from app.schemas.auth import UserCreateRequest, UserUpdateRequest
from app.services.errors import ConflictError, NotFoundError
from app.services.user_store import SqlUserStore


def _session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


class TestAdminResourceInvariant(unittest.TestCase):
    """Saving an admin always stores an empty assigned_resources list."""

    def setUp(self) -> None:
        self.db = _session()

    def tearDown(self) -> None:
        self.db.close()

    def test_cleared_on_create(self) -> None:
        user = User(username="root", password_hash="x", role="admin", assigned_resources=["dev-1"])
        self.db.add(user)
        self.db.commit()
        self.db.expire_all()
        self.assertEqual(self.db.get(User, user.id).assigned_resources, [])

    def test_cleared_on_promotion(self) -> None:
        user = User(username="bob", password_hash="x", role="client", assigned_resources=["dev-1"])
        self.db.add(user)
        self.db.commit()
        user.role = "admin"
        self.db.commit()
        self.db.expire_all()
        self.assertEqual(self.db.get(User, user.id).assigned_resources, [])

    def test_cleared_when_resources_added_to_admin(self) -> None:
        user = User(username="root", password_hash="x", role="admin")
        self.db.add(user)
        self.db.commit()
        user.assigned_resources = ["dev-9"]
        self.db.commit()
        self.db.expire_all()
        self.assertEqual(self.db.get(User, user.id).assigned_resources, [])

    def test_client_keeps_resources(self) -> None:
        user = User(username="alice", password_hash="x", role="client", assigned_resources=["dev-1"])
        self.db.add(user)
        self.db.commit()
        self.db.expire_all()
        self.assertEqual(self.db.get(User, user.id).assigned_resources, ["dev-1"])

    def test_username_is_normalized(self) -> None:
        user = User(username="  Alice ", password_hash="x", role="client")
        self.db.add(user)
        self.db.commit()
        self.assertEqual(user.username, "alice")


class TestUserRequestBounds(unittest.TestCase):
    """Create and update requests share the username and password length bounds."""

    def test_bounds_on_create(self) -> None:
        UserCreateRequest(username="a" * USERNAME_MIN_LEN, password="p" * PASSWORD_MIN_LEN)
        UserCreateRequest(username="a" * USERNAME_MAX_LEN, password="p" * PASSWORD_MAX_LEN)
        for username, password in (
            ("a" * (USERNAME_MIN_LEN - 1), "p" * PASSWORD_MIN_LEN),
            ("a" * (USERNAME_MAX_LEN + 1), "p" * PASSWORD_MIN_LEN),
            ("a" * USERNAME_MIN_LEN, "p" * (PASSWORD_MIN_LEN - 1)),
            ("a" * USERNAME_MIN_LEN, "p" * (PASSWORD_MAX_LEN + 1)),
        ):
            with self.assertRaises(ValidationError):
                UserCreateRequest(username=username, password=password)

    def test_bounds_on_update(self) -> None:
        with self.assertRaises(ValidationError):
            UserUpdateRequest(password="p" * (PASSWORD_MIN_LEN - 1))
        with self.assertRaises(ValidationError):
            UserUpdateRequest(username="a" * (USERNAME_MAX_LEN + 1))

    def test_is_admin(self) -> None:
        self.assertTrue(User(username="root", password_hash="x", role="admin").is_admin)
        self.assertFalse(User(username="bob", password_hash="x", role="client").is_admin)


class TestSqlUserStore(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _session()
        self.store = SqlUserStore(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def _create(self, **kwargs: object) -> User:
        defaults = {"username": "alice", "password": "secret1-long", "role": "client", "assigned_resources": ["dev-1"]}
        defaults.update(kwargs)
        return self.store.create_user(UserCreateRequest(**defaults))

    def test_create_hashes_password(self) -> None:
        user = self._create()
        self.assertNotEqual(user.password_hash, "secret1-long")
        self.assertTrue(verify_password("secret1-long", user.password_hash))

    def test_lookup_is_case_insensitive(self) -> None:
        user = self._create()
        self.assertEqual(self.store.find_by_username("ALICE").id, user.id)
        self.assertEqual(self.store.find_by_id(user.id).username, "alice")
        self.assertIsNone(self.store.find_by_username("nobody"))
        self.assertIsNone(self.store.find_by_id(9999))

    def test_duplicate_username_conflicts(self) -> None:
        self._create()
        with self.assertRaises(ConflictError):
            self._create(username="Alice")

    def test_create_admin_drops_resources(self) -> None:
        user = self._create(username="root", role="admin", assigned_resources=["dev-1"])
        self.assertEqual(user.assigned_resources, [])

    def test_update_promotes_and_clears(self) -> None:
        user = self._create()
        updated = self.store.update_user(user.id, UserUpdateRequest(role="admin"))
        self.assertEqual(updated.role, "admin")
        self.assertEqual(updated.assigned_resources, [])

    def test_update_resources_ignored_for_admin(self) -> None:
        user = self._create(username="root", role="admin")
        updated = self.store.update_user(user.id, UserUpdateRequest(assigned_resources=["dev-5"]))
        self.assertEqual(updated.assigned_resources, [])

    def test_update_client_resources(self) -> None:
        user = self._create()
        updated = self.store.update_user(user.id, UserUpdateRequest(assigned_resources=["dev-2", "dev-3"]))
        self.assertEqual(updated.assigned_resources, ["dev-2", "dev-3"])

    def test_update_username_conflict(self) -> None:
        self._create()
        bob = self._create(username="bob")
        with self.assertRaises(ConflictError):
            self.store.update_user(bob.id, UserUpdateRequest(username="alice"))

    def test_update_unknown_user(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.update_user(404, UserUpdateRequest(role="client"))


if __name__ == "__main__":
    unittest.main()
