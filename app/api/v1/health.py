"""Health check: database reachability and which algorithm signs new access tokens."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.auth import get_token_service
from app.core.config import settings
from app.core.database import check_db_connected, get_db
from app.schemas.health import HealthResponse
from app.services.tokens import TokenService

router = APIRouter()


@router.get("/", response_model=HealthResponse)
def get_health(
    db: Annotated[Session, Depends(get_db)],
    tokens: Annotated[TokenService, Depends(get_token_service)],
) -> HealthResponse:
    """
    Return service health, database connectivity and the active signing algorithm.
    An HS256 answer in production means the RS256 keypair was not found.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database=db_status,
        signing_algorithm=tokens.signing_algorithm,
    )
