"""
Internal endpoint authentication using the X-Internal-Secret header.
"""

import hmac

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from alert_engine.alerts.dispatcher import INTERNAL_SECRET_HEADER
from alert_engine.config.settings import get_settings

internal_secret_header = APIKeyHeader(name=INTERNAL_SECRET_HEADER, auto_error=False)


async def verify_internal_secret(
    secret: str | None = Security(internal_secret_header),
) -> str:
    """
    Verify the shared secret sent by the alert engine's HTTP dispatcher.

    Unlike public API keys there is no dev-mode bypass: with no secret
    configured every request is rejected.

    Raises:
        HTTPException: 401 if the secret is missing, wrong, or not configured
    """
    expected = get_settings().internal_api_secret
    if not expected or secret is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    if not hmac.compare_digest(secret.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    return secret
