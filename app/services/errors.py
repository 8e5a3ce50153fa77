"""Error family raised by the auth services; routes map each class to an HTTP status."""


class AuthError(Exception):
    """Base class; message is safe to show to the caller."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class BadRequestError(AuthError):
    """Missing or malformed input."""


class UnauthorizedError(AuthError):
    """Credential missing, invalid or expired: the caller must re-authenticate or refresh."""


class InvalidCredentialsError(UnauthorizedError):
    """Unknown username or wrong password. Deliberately indistinguishable."""

    def __init__(self) -> None:
        super().__init__("Invalid username or password.")


class TokenExpiredError(UnauthorizedError):
    """Access token signature is fine but it is past its expiry."""

    def __init__(self) -> None:
        super().__init__("Token expired")


class TokenInvalidError(UnauthorizedError):
    """Bad signature, wrong issuer/audience, or malformed token."""

    def __init__(self) -> None:
        super().__init__("Invalid token")


class InvalidRefreshTokenError(UnauthorizedError):
    """Refresh token unknown, expired or revoked."""

    def __init__(self) -> None:
        super().__init__("Invalid or expired refresh token")


class RefreshTokenReuseError(InvalidRefreshTokenError):
    """An already-rotated refresh token was presented again (possible theft)."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__()


class ForbiddenError(AuthError):
    """Authenticated, but not entitled to the resource."""


class NotFoundError(AuthError):
    """Referenced record does not exist."""


class ConflictError(AuthError):
    """Write would violate a uniqueness rule (e.g. duplicate username)."""


class InternalAuthError(AuthError):
    """Unexpected lower-layer fault. Details are logged, never returned."""

    def __init__(self, message: str = "Internal authentication error") -> None:
        super().__init__(message)
