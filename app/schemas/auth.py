from pydantic import BaseModel


class LoginRequest(BaseModel):
    """Admin credentials."""
    username: str
    password: str


class TokenResponse(BaseModel):
    """Issued access token."""
    token: str
    token_type: str = "bearer"
    username: str
    expires_in: int
