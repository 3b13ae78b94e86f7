"""Bearer token verification.

Tokens are minted by the identity service; this service only verifies the
signature and expiry and reads the identity claims.
"""

from typing import Any
from uuid import UUID

from jose import JWTError, jwt

from src.config.settings import get_settings

from .permissions import Principal


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Validates:
    - JWT signature
    - Expiration time
    - Token type == "access"

    Raises:
        JWTError: If token is invalid, expired, or wrong type
    """
    settings = get_settings()

    payload = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
    )

    if payload.get("type") != "access":
        msg = "Invalid token type: expected 'access'"
        raise JWTError(msg)

    return payload


def principal_from_payload(payload: dict[str, Any]) -> Principal:
    """Build the caller's Principal from decoded claims.

    Raises:
        JWTError: If the subject is not a UUID
    """
    try:
        user_id = UUID(str(payload["sub"]))
    except (KeyError, ValueError) as e:
        msg = "Invalid subject claim"
        raise JWTError(msg) from e

    return Principal.from_claims(
        user_id=user_id,
        role=payload.get("role", ""),
        permissions=payload.get("permissions") or [],
    )
