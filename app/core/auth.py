"""
Tenant identity from the external identity provider.

Sign-in happens elsewhere; the front end forwards the provider's JWT as a
bearer token and this module only verifies it. The tenant is the ``sub`` claim.
"""
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel, ValidationError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


class TokenPayload(BaseModel):
    """Claims this service relies on"""
    sub: str
    exp: int  # Unix timestamp
    email: Optional[str] = None

    @property
    def tenant_id(self) -> str:
        return self.sub


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a JWT; None when invalid, expired or missing the tenant claim"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty; tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options={"require": ["sub", "exp"]},
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError as e:
        logger.warning("JWT token invalid or expired", extra_data={"reason": type(e).__name__})
        return None
    except ValidationError as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
