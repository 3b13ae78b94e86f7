"""FastAPI dependencies for authentication.

Provides dependency injection for:
- Current principal extraction from the bearer token

Capabilities are checked once, by the governance engine, not here.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from src.core.context import set_actor

from .permissions import Principal
from .security import decode_access_token, principal_from_payload


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


async def get_current_principal(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> Principal:
    """Get the authenticated principal from the JWT token.

    Raises:
        HTTPException(401): If token is missing, invalid, or expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token not provided",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        principal = principal_from_payload(decode_access_token(token))
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    # Attribute the rest of the request in logs
    set_actor(principal.user_id, principal.role.value)
    return principal


# ==============================================================================
# Type Aliases for Cleaner Code
# ==============================================================================

CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
