"""
Refresh token ledger: issue, look up, rotate and revoke persisted refresh tokens.

Rotation is single-use across processes: the old row is consumed with a
conditional UPDATE (revoked_at IS NULL and not expired) and only the request
whose UPDATE touched the row goes on to insert the successor.
"""

import contextlib
import logging
import secrets
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.config import MIN_REFRESH_TOKEN_BYTES
from app.models import RefreshToken
from app.services.errors import (
    InternalAuthError,
    InvalidRefreshTokenError,
    RefreshTokenReuseError,
)

logger = logging.getLogger(__name__)

# Successor insert retries on a token-value collision.
MAX_ROTATION_ATTEMPTS = 3


@dataclass(frozen=True)
class RequestMeta:
    """Where a request came from; stored with refresh tokens and audit entries."""

    ip_address: str | None = None
    user_agent: str | None = None


class RefreshTokenLedger:
    """Persistence and lifecycle of refresh tokens for one DB session."""

    def __init__(
        self,
        db: Session,
        *,
        ttl: timedelta = timedelta(days=7),
        token_bytes: int = MIN_REFRESH_TOKEN_BYTES,
        clock: Clock = utc_now,
        token_factory: Callable[[int], str] = secrets.token_hex,
    ) -> None:
        if token_bytes < MIN_REFRESH_TOKEN_BYTES:
            raise ValueError(
                f"refresh tokens need at least {MIN_REFRESH_TOKEN_BYTES} random bytes"
            )
        self._db = db
        self._ttl = ttl
        self._token_bytes = token_bytes
        self._clock = clock
        self._token_factory = token_factory

    def _new_value(self) -> str:
        value = self._token_factory(self._token_bytes)
        if len(value) < self._token_bytes * 2:
            raise ValueError("refresh token source returned too little entropy")
        return value

    def _new_row(self, user_id: int, value: str, now: datetime, meta: RequestMeta | None) -> RefreshToken:
        meta = meta or RequestMeta()
        return RefreshToken(
            token=value,
            user_id=user_id,
            created_at=now,
            expires_at=now + self._ttl,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )

    def _write(self, commit: bool) -> None:
        if commit:
            self._db.commit()
        else:
            self._db.flush()

    @contextlib.contextmanager
    def deferred_commit(self) -> Iterator[None]:
        """
        Commit writes made with commit=False once the block succeeds; roll them
        back if it raises, leaving the presented token usable.
        """
        try:
            yield
            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

    def issue(self, user_id: int, meta: RequestMeta | None = None, *, commit: bool = True) -> RefreshToken:
        """Start a new chain for the user. With commit=False the row is only flushed."""
        for attempt in range(1, MAX_ROTATION_ATTEMPTS + 1):
            row = self._new_row(user_id, self._new_value(), self._clock(), meta)
            self._db.add(row)
            try:
                self._write(commit)
            except IntegrityError:
                self._db.rollback()
                logger.warning("Refresh token collision on issue (attempt %s)", attempt)
                continue
            return row
        raise InternalAuthError("Could not allocate a unique refresh token")

    def find_valid(self, token: str) -> RefreshToken | None:
        """Exact-match lookup of a token that is neither revoked nor expired."""
        if not token:
            return None
        stmt = select(RefreshToken).where(
            RefreshToken.token == token,
            RefreshToken.revoked_at.is_(None),
            RefreshToken.expires_at > self._clock(),
        )
        return self._db.execute(stmt).scalar_one_or_none()

    def find(self, token: str) -> RefreshToken | None:
        """Lookup regardless of state (for reuse diagnosis and audit)."""
        if not token:
            return None
        return self._db.execute(
            select(RefreshToken).where(RefreshToken.token == token)
        ).scalar_one_or_none()

    def rotate(
        self,
        old_token: str,
        meta: RequestMeta | None = None,
        *,
        commit: bool = True,
    ) -> RefreshToken:
        """
        Consume old_token and return its successor, in one transaction.
        With commit=False the transaction stays open for the caller to finish
        inside deferred_commit().

        Raises RefreshTokenReuseError when the token was already rotated, and
        InvalidRefreshTokenError when it is unknown, revoked or expired.
        """
        for attempt in range(1, MAX_ROTATION_ATTEMPTS + 1):
            now = self._clock()
            new_value = self._new_value()
            consumed = self._db.execute(
                update(RefreshToken)
                .where(
                    RefreshToken.token == old_token,
                    RefreshToken.revoked_at.is_(None),
                    RefreshToken.expires_at > now,
                )
                .values(revoked_at=now, replaced_by=new_value)
                .execution_options(synchronize_session=False)
            )
            if consumed.rowcount != 1:
                self._db.rollback()
                self._raise_for_unusable(old_token)

            user_id = self._db.execute(
                select(RefreshToken.user_id).where(RefreshToken.token == old_token)
            ).scalar_one()
            successor = self._new_row(user_id, new_value, now, meta)
            self._db.add(successor)
            try:
                self._write(commit)
            except IntegrityError:
                self._db.rollback()
                logger.warning("Refresh token collision on rotate (attempt %s)", attempt)
                continue
            return successor
        raise InternalAuthError("Could not allocate a unique refresh token")

    def _raise_for_unusable(self, token: str) -> None:
        row = self.find(token)
        if row is not None and row.replaced_by is not None:
            raise RefreshTokenReuseError(user_id=row.user_id)
        raise InvalidRefreshTokenError()

    def revoke(self, token: str, user_id: int | None = None) -> bool:
        """
        Revoke a single token without a successor. False if it was not active
        (or, when user_id is given, not owned by that user).
        """
        if not token:
            return False
        conditions = [RefreshToken.token == token, RefreshToken.revoked_at.is_(None)]
        if user_id is not None:
            conditions.append(RefreshToken.user_id == user_id)
        result = self._db.execute(
            update(RefreshToken)
            .where(*conditions)
            .values(revoked_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        self._db.commit()
        return result.rowcount == 1

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every not-yet-revoked token of the user; returns how many."""
        result = self._db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        self._db.commit()
        return result.rowcount

    def purge_expired(self, before: datetime | None = None) -> int:
        """Delete rows whose expiry is before the cutoff (default: now). Caller commits."""
        cutoff = before or self._clock()
        return (
            self._db.query(RefreshToken)
            .filter(RefreshToken.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
