"""
Session service: login, refresh, logout and logout-all over the token ledger.

Each refresh-token chain moves Active -> Rotated (a fresh Active successor is
created) or Active -> Revoked; nothing leaves Revoked. Access tokens carry a
snapshot of role and resources taken at login; refresh re-reads the user so
role changes apply from the next refresh on.
"""

import contextlib
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.security import burn_password_check, normalize_username, verify_password
from app.models import User
from app.schemas.auth import Identity
from app.services import audit
from app.services.audit import AuditTrail
from app.services.errors import (
    AuthError,
    BadRequestError,
    InternalAuthError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    RefreshTokenReuseError,
    TokenInvalidError,
)
from app.services.refresh_ledger import RefreshTokenLedger, RequestMeta
from app.services.tokens import TokenService
from app.services.user_store import UserStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionResult:
    access_token: str
    refresh_token: str
    expires_in: int
    identity: Identity


class SessionService:
    """Orchestrates credential store, password check, token signer and refresh ledger."""

    def __init__(
        self,
        users: UserStore,
        ledger: RefreshTokenLedger,
        tokens: TokenService,
        audit_trail: AuditTrail,
        *,
        reuse_revokes_all: bool = False,
        password_verifier: Callable[[str, str], bool] = verify_password,
    ) -> None:
        self._users = users
        self._ledger = ledger
        self._tokens = tokens
        self._audit = audit_trail
        self._reuse_revokes_all = reuse_revokes_all
        self._verify_password = password_verifier

    @contextlib.contextmanager
    def _internal_errors(self, operation: str) -> Iterator[None]:
        """Let AuthError through; turn storage and payload faults into InternalAuthError."""
        try:
            yield
        except AuthError:
            raise
        except (SQLAlchemyError, ValidationError) as e:
            logger.exception("Unexpected failure during %s", operation)
            raise InternalAuthError() from e

    def _issue(self, identity: Identity, refresh_token: str) -> SessionResult:
        return SessionResult(
            access_token=self._tokens.issue(identity),
            refresh_token=refresh_token,
            expires_in=self._tokens.ttl_seconds,
            identity=identity,
        )

    def login(self, username: str, password: str, meta: RequestMeta | None = None) -> SessionResult:
        """Check credentials and start a new refresh-token chain."""
        if not username or not username.strip() or not password:
            raise BadRequestError("Username and password are required.")
        meta = meta or RequestMeta()
        normalized = normalize_username(username)
        with self._internal_errors("login"):
            user = self._users.find_by_username(normalized)
            if user is None:
                burn_password_check(password)
                self._login_failed(normalized, None, "unknown_user", meta)
            elif not self._verify_password(password, user.password_hash):
                self._login_failed(normalized, user.id, "invalid_password", meta)

            identity = Identity.model_validate(user)
            with self._ledger.deferred_commit():
                refresh = self._ledger.issue(identity.id, meta, commit=False)
                result = self._issue(identity, refresh.token)
            self._audit.record(
                audit.LOGIN_SUCCESS,
                user_id=identity.id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        logger.info("Login succeeded", extra={"user_id": identity.id, "username": normalized})
        return result

    def _login_failed(self, username: str, user_id: int | None, reason: str, meta: RequestMeta) -> None:
        logger.warning("Login failed", extra={"username": username, "reason": reason})
        self._audit.record(
            audit.LOGIN_FAILED,
            user_id=user_id,
            target_id=username,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"reason": reason},
        )
        raise InvalidCredentialsError()

    def refresh(self, refresh_token: str, meta: RequestMeta | None = None) -> SessionResult:
        """Rotate the refresh token and mint an access token from the user's current record."""
        if not refresh_token:
            raise BadRequestError("Refresh token is required.")
        meta = meta or RequestMeta()
        with self._internal_errors("refresh"):
            record = self._ledger.find_valid(refresh_token)
            if record is not None and self._users.find_by_id(record.user_id) is None:
                self._user_missing(refresh_token, record.user_id, meta)
            try:
                successor = self._ledger.rotate(refresh_token, meta, commit=False)
            except RefreshTokenReuseError as e:
                self._reuse_detected(e.user_id, meta)
                raise
            except InvalidRefreshTokenError:
                logger.warning("Refresh failed: invalid or expired token")
                raise

            # Nothing is committed until the new access token is signed, so a
            # failure here leaves the presented refresh token usable.
            user_id = successor.user_id
            try:
                with self._ledger.deferred_commit():
                    user = self._users.find_by_id(user_id)
                    if user is None:
                        raise InvalidRefreshTokenError()
                    identity = Identity.model_validate(user)
                    result = self._issue(identity, successor.token)
            except InvalidRefreshTokenError:
                self._user_missing(refresh_token, user_id, meta)
            self._audit.record(
                audit.TOKEN_REFRESHED,
                user_id=identity.id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
            )
        logger.info("Token refreshed", extra={"user_id": identity.id})
        return result

    def _user_missing(self, refresh_token: str, user_id: int, meta: RequestMeta) -> None:
        self._ledger.revoke(refresh_token)
        logger.warning("Refresh failed: user no longer exists", extra={"user_id": user_id})
        self._audit.record(
            audit.TOKEN_REVOKED,
            user_id=user_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"reason": "user_missing"},
        )
        raise InvalidRefreshTokenError()

    def _reuse_detected(self, user_id: int, meta: RequestMeta) -> None:
        revoked = None
        if self._reuse_revokes_all:
            revoked = self._ledger.revoke_all_for_user(user_id)
        logger.error(
            "Refresh token reuse detected; consider forcing logout-all for this user",
            extra={
                "security_event": "refresh_token_reuse",
                "user_id": user_id,
                "ip_address": meta.ip_address,
                "revoked_count": revoked,
            },
        )
        self._audit.record(
            audit.TOKEN_REUSE_DETECTED,
            user_id=user_id,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
            details={"revoked_count": revoked},
        )

    def logout(
        self,
        refresh_token: str | None,
        identity: Identity,
        meta: RequestMeta | None = None,
    ) -> None:
        """Revoke the given refresh token if it is the caller's. Idempotent."""
        meta = meta or RequestMeta()
        with self._internal_errors("logout"):
            revoked = False
            if refresh_token:
                revoked = self._ledger.revoke(refresh_token, user_id=identity.id)
            self._audit.record(
                audit.LOGOUT,
                user_id=identity.id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                details={"token_revoked": revoked},
            )
        logger.info("Logout", extra={"user_id": identity.id, "token_revoked": revoked})

    def logout_all(self, identity: Identity, meta: RequestMeta | None = None) -> int:
        """Revoke every active chain of the caller."""
        meta = meta or RequestMeta()
        with self._internal_errors("logout_all"):
            count = self._ledger.revoke_all_for_user(identity.id)
            self._audit.record(
                audit.TOKEN_REVOKED,
                user_id=identity.id,
                ip_address=meta.ip_address,
                user_agent=meta.user_agent,
                details={"revoked_count": count},
            )
        logger.info("All refresh tokens revoked", extra={"user_id": identity.id, "revoked_count": count})
        return count

    def authenticate(self, access_token: str) -> Identity:
        """
        Verify a bearer access token and confirm its user still exists.

        Returns the identity as stamped in the token; role and resource changes
        show up after the next refresh.
        """
        identity = self._tokens.verify(access_token)
        self._existing_user(identity.id)
        return identity

    def current_identity(self, access_token: str) -> Identity:
        """Verify the access token and return the user as currently stored."""
        identity = self._tokens.verify(access_token)
        return Identity.model_validate(self._existing_user(identity.id))

    def _existing_user(self, user_id: int) -> User:
        with self._internal_errors("user lookup"):
            user = self._users.find_by_id(user_id)
        if user is None:
            logger.warning("Token refers to a missing user", extra={"user_id": user_id})
            raise TokenInvalidError()
        return user
