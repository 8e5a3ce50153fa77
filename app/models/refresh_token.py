"""ORM model for persisted refresh tokens (single-use, rotated on every refresh)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func

from app.models.base import Base


class RefreshToken(Base):
    """
    One opaque refresh token. Rotation revokes the row and points replaced_by at
    its successor, so the replaced_by links of a login form the session history.
    """

    __tablename__ = "refresh_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token = Column(String(255), nullable=False, unique=True, index=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    replaced_by = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
