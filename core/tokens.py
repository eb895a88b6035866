"""
Session token issuance and verification (JWT, HMAC).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from core.errors import ConfigurationError, ServiceError

logger = logging.getLogger(__name__)


class TokenIssuer:
    """
    Sign and verify stateless session tokens.

    Args:
        secret: HMAC signing key. Must be non-empty.
        algorithm: JWT algorithm (default "HS256").
        ttl_hours: Token lifetime; None or 0 disables expiry.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", ttl_hours: Optional[float] = 168):
        if not secret:
            raise ConfigurationError("JWT signing secret is not configured")
        if not algorithm.startswith("HS"):
            raise ConfigurationError(f"Unsupported JWT algorithm: {algorithm}")

        self._secret = secret
        self.algorithm = algorithm
        self.ttl = timedelta(hours=ttl_hours) if ttl_hours else None

    def sign(self, claims: Dict[str, Any]) -> str:
        """Sign claims, adding iat and (if configured) exp."""
        now = datetime.now(tz=timezone.utc)
        payload = dict(claims)
        payload["iat"] = now
        if self.ttl is not None:
            payload["exp"] = now + self.ttl
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Decode and validate a token.

        Raises:
            ServiceError: UNAUTHORIZED if the token is invalid or expired.
        """
        try:
            return jwt.decode(token, self._secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as e:
            raise ServiceError.unauthorized("Token has expired") from e
        except jwt.InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            raise ServiceError.unauthorized("Invalid token") from e
