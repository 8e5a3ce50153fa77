"""
Access token issuance and verification.

Tokens are signed with RS256 when a keypair is configured and with the HS256
shared secret otherwise. Verification walks an ordered chain of strategies
(RS256 first, then the legacy HS256 secret) so tokens minted before a key
migration keep working until they expire.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import jwt
from pydantic import ValidationError

from app.core.clock import Clock, utc_now
from app.schemas.auth import Identity
from app.services.errors import InternalAuthError, TokenExpiredError, TokenInvalidError

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)

RS256 = "RS256"
HS256 = "HS256"

# Signature, issuer and audience go through PyJWT; exp is checked against our clock.
_DECODE_OPTIONS = {
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
    "require": ["exp"],
}


@dataclass(frozen=True)
class KeyMaterial:
    """PEM keypair for RS256 and/or the shared HS256 secret. Any part may be absent."""

    private_key: str | None = None
    public_key: str | None = None
    shared_secret: str | None = field(default=None, repr=False)

    @property
    def has_keypair(self) -> bool:
        return bool(self.private_key and self.public_key)


class VerificationStatus(str, Enum):
    OK = "ok"
    EXPIRED = "expired"
    INVALID = "invalid"
    NOT_CONFIGURED = "not_configured"


@dataclass(frozen=True)
class VerificationOutcome:
    status: VerificationStatus
    identity: Identity | None = None
    reason: str = ""


class TokenVerifierStrategy(Protocol):
    """One way of accepting a token. Reports a typed outcome instead of raising."""

    name: str

    def verify(self, token: str, now: datetime) -> VerificationOutcome: ...


def identity_from_claims(claims: dict[str, Any]) -> Identity:
    """
    Build the uniform Identity from token claims.

    Current tokens carry sub/assigned_resources; pre-migration tokens used
    id or userId and assignedDevices.
    """
    subject = claims.get("sub") or claims.get("id") or claims.get("userId")
    if subject is None:
        raise ValueError("token has no subject")
    resources = claims.get("assigned_resources")
    if resources is None:
        resources = claims.get("assignedDevices") or []
    return Identity(
        id=int(subject),
        username=claims.get("username", ""),
        role=claims.get("role", ""),
        assigned_resources=[str(r) for r in resources],
    )


def _outcome_from_claims(claims: dict[str, Any], now: datetime) -> VerificationOutcome:
    try:
        exp = float(claims["exp"])
    except (KeyError, TypeError, ValueError):
        return VerificationOutcome(VerificationStatus.INVALID, reason="bad exp claim")
    if exp <= now.timestamp():
        return VerificationOutcome(VerificationStatus.EXPIRED, reason="token expired")
    try:
        identity = identity_from_claims(claims)
    except (ValueError, TypeError, ValidationError) as e:
        return VerificationOutcome(VerificationStatus.INVALID, reason=f"bad payload: {e}")
    return VerificationOutcome(VerificationStatus.OK, identity=identity)


class RS256Verifier:
    """Asymmetric verification: signature, issuer, audience and expiry."""

    name = RS256

    def __init__(self, public_key: str | None, issuer: str, audience: str) -> None:
        self._public_key = public_key
        self._issuer = issuer
        self._audience = audience

    def verify(self, token: str, now: datetime) -> VerificationOutcome:
        if not self._public_key:
            return VerificationOutcome(VerificationStatus.NOT_CONFIGURED)
        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[RS256],
                issuer=self._issuer,
                audience=self._audience,
                options=_DECODE_OPTIONS,
            )
        except jwt.PyJWTError as e:
            return VerificationOutcome(VerificationStatus.INVALID, reason=str(e))
        return _outcome_from_claims(claims, now)


class LegacyHS256Verifier:
    """
    Shared-secret verification for tokens issued before the RS256 migration.

    Old tokens had no issuer/audience, so those claims are only checked when present.
    """

    name = HS256

    def __init__(self, secret: str | None, issuer: str, audience: str) -> None:
        self._secret = secret
        self._issuer = issuer
        self._audience = audience

    def verify(self, token: str, now: datetime) -> VerificationOutcome:
        if not self._secret:
            return VerificationOutcome(VerificationStatus.NOT_CONFIGURED)
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[HS256],
                options={**_DECODE_OPTIONS, "verify_aud": False, "verify_iss": False},
            )
        except jwt.PyJWTError as e:
            return VerificationOutcome(VerificationStatus.INVALID, reason=str(e))
        if "iss" in claims and claims["iss"] != self._issuer:
            return VerificationOutcome(VerificationStatus.INVALID, reason="issuer mismatch")
        if "aud" in claims:
            aud = claims["aud"]
            audiences = aud if isinstance(aud, list) else [aud]
            if self._audience not in audiences:
                return VerificationOutcome(VerificationStatus.INVALID, reason="audience mismatch")
        return _outcome_from_claims(claims, now)


class TokenService:
    """Signs access tokens and verifies them through an ordered strategy chain."""

    def __init__(
        self,
        keys: KeyMaterial,
        *,
        issuer: str,
        audience: str,
        ttl: timedelta = timedelta(minutes=15),
        clock: Clock = utc_now,
        strategies: list[TokenVerifierStrategy] | None = None,
    ) -> None:
        self._keys = keys
        self._issuer = issuer
        self._audience = audience
        self._ttl = ttl
        self._clock = clock
        if strategies is None:
            strategies = [
                RS256Verifier(keys.public_key, issuer, audience),
                LegacyHS256Verifier(keys.shared_secret, issuer, audience),
            ]
        self._strategies = strategies

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    @property
    def signing_algorithm(self) -> str | None:
        if self._keys.has_keypair:
            return RS256
        if self._keys.shared_secret:
            return HS256
        return None

    def issue(self, identity: Identity) -> str:
        """Sign a token carrying a snapshot of the identity's role and resources."""
        now = self._clock()
        payload: dict[str, Any] = {
            "sub": str(identity.id),
            "username": identity.username,
            "role": identity.role,
            "assigned_resources": list(identity.assigned_resources),
            "iss": self._issuer,
            "aud": self._audience,
            "iat": int(now.timestamp()),
            "exp": int((now + self._ttl).timestamp()),
        }
        algorithm = self.signing_algorithm
        if algorithm is None:
            logger.error("No JWT signing key configured")
            raise InternalAuthError()
        key = self._keys.private_key if algorithm == RS256 else self._keys.shared_secret
        return jwt.encode(payload, key, algorithm=algorithm)

    def verify(self, token: str) -> Identity:
        """
        Return the identity of the first strategy that accepts the token.

        Raises TokenExpiredError if any strategy saw a valid signature past its
        expiry, TokenInvalidError otherwise (including when nothing is configured).
        """
        now = self._clock()
        reasons: dict[str, str] = {}
        expired = False
        for strategy in self._strategies:
            outcome = strategy.verify(token, now)
            if outcome.status is VerificationStatus.OK:
                if strategy is not self._strategies[0]:
                    logger.debug("Token accepted by fallback verifier %s", strategy.name)
                return outcome.identity
            if outcome.status is VerificationStatus.NOT_CONFIGURED:
                continue
            if outcome.status is VerificationStatus.EXPIRED:
                expired = True
            reasons[strategy.name] = outcome.reason
        logger.warning("Token verification failed", extra={"reasons": reasons})
        if expired:
            raise TokenExpiredError()
        raise TokenInvalidError()


def _read_pem(path: str | None) -> str | None:
    if not path:
        return None
    pem = Path(path)
    if not pem.exists():
        return None
    try:
        return pem.read_text(encoding="utf-8")
    except OSError as e:
        logger.error("Failed to read JWT key %s: %s", path, e)
        raise InternalAuthError() from e


def load_key_material(settings: "Settings") -> KeyMaterial:
    """Read the configured PEM files; missing files mean RS256 is off."""
    private_key = _read_pem(settings.JWT_PRIVATE_KEY_PATH)
    public_key = _read_pem(settings.JWT_PUBLIC_KEY_PATH)
    secret = settings.JWT_SECRET.get_secret_value() if settings.JWT_SECRET else None
    if not (private_key and public_key):
        logger.warning(
            "RS256 keypair not found; issuing HS256 tokens. "
            "Run 'python -m app.scripts.generate_keys' to enable RS256."
        )
    return KeyMaterial(private_key=private_key, public_key=public_key, shared_secret=secret)


def build_token_service(settings: "Settings", clock: Clock = utc_now) -> TokenService:
    return TokenService(
        load_key_material(settings),
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
        ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        clock=clock,
    )
