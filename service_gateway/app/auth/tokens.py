"""
Bearer token verification for the gateway pipeline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from shared.errors import AuthenticationError
from shared.logging import get_logger


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a verified token."""

    id: str
    role: str
    exp: Optional[int] = None


class TokenVerifier:
    """Signs and verifies HMAC JWTs issued to recipe app users."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.logger = get_logger("gateway.auth.tokens")

    def sign(self, payload: Dict[str, Any], expires_in: int = 900) -> str:
        """Issue a token; ``id`` and ``role`` are the claims the pipeline reads."""
        claims = dict(payload)
        claims.setdefault("exp", int(time.time()) + expires_in)
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Validate signature and expiry, returning the caller identity."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except JWTError as exc:
            raise AuthenticationError("Invalid or expired token", details={"error": str(exc)})

        subject = claims.get("id") or claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("Token missing subject claim")

        return TokenClaims(
            id=subject,
            role=str(claims.get("role", "user")),
            exp=claims.get("exp"),
        )

    def verify_header(self, authorization: Optional[str]) -> Optional[TokenClaims]:
        """Resolve an Authorization header; anonymous when absent or invalid."""
        if not authorization or not authorization.startswith("Bearer "):
            return None

        token = authorization[7:].strip()
        if not token:
            return None

        try:
            return self.verify(token)
        except AuthenticationError as exc:
            self.logger.warning("Bearer token rejected", error=exc.details.get("error", exc.message))
            return None
