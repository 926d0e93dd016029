from fastapi import APIRouter, HTTPException, status

from app.config import get_settings
from app.schemas.auth import LoginRequest, TokenResponse
from app.services.auth_service import AuthenticationError, authenticate

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Log in as administrator",
    description="Exchange the admin username and password for a bearer token."
)
def login(credentials: LoginRequest):
    """Issue a JWT for the configured admin user."""
    try:
        token = authenticate(credentials.username, credentials.password)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )

    return TokenResponse(
        token=token,
        username=credentials.username,
        expires_in=get_settings().JWT_EXPIRES_HOURS * 3600
    )
