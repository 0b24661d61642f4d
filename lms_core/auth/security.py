"""JWT access token verification.

Tokens are issued by the identity service and signed with the shared
auth_secret_key. This service only verifies them; create_access_token
mints tokens for service-to-service callers and tests.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from lms_core.config.settings import get_settings


ACCESS_TOKEN_TYPE = "access"

# Claims every access token must carry
_DECODE_OPTIONS = {"require_exp": True, "require_iat": True, "require_sub": True}


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT access token.

    Args:
        data: Claims (typically {"sub": user_id, "email": email, "role": role})
        expires_delta: Token lifetime (default from settings)
    """
    settings = get_settings()

    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(
        minutes=settings.auth_access_token_expire_minutes
    )
    claims = {
        **data,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    }

    return jwt.encode(claims, settings.auth_secret_key, algorithm=settings.auth_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature, expiry, required claims and token type.

    Raises:
        JWTError: If the token is invalid, expired, or not an access token
    """
    settings = get_settings()

    claims = jwt.decode(
        token,
        settings.auth_secret_key,
        algorithms=[settings.auth_algorithm],
        options=_DECODE_OPTIONS,
    )

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        msg = f"Invalid token type: expected '{ACCESS_TOKEN_TYPE}'"
        raise JWTError(msg)

    return claims
