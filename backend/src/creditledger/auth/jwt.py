"""JWT verification for identity provider access tokens.

Tokens are signed by the identity provider with the configured algorithm and
key (a shared secret for HS256, a PEM public key for RS256). The service only
verifies them; ``create_access_token`` exists for local tooling and tests.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

import jwt

from creditledger.config import settings


class JWTAuth:
    """JWT authentication handler."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        """Initialize JWT auth from settings, with optional overrides."""
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.audience = audience if audience is not None else settings.jwt_audience
        self.access_token_expire_minutes = settings.access_token_expire_minutes

    def create_access_token(
        self,
        subject: str,
        email: str,
        role: Optional[str] = None,
        additional_claims: Optional[Dict] = None,
        expires_in: Optional[timedelta] = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            subject: Identity provider subject
            email: User email
            role: Optional role claim
            additional_claims: Additional JWT claims
            expires_in: Lifetime, defaulting to the configured expiry

        Returns:
            Encoded JWT token
        """
        now = datetime.utcnow()
        expire = now + (expires_in or timedelta(minutes=self.access_token_expire_minutes))

        claims = {
            "sub": subject,
            "email": email,
            "iat": now,
            "exp": expire,
            "type": "access",
        }
        if role:
            claims["role"] = role
        if self.audience:
            claims["aud"] = self.audience
        if additional_claims:
            claims.update(additional_claims)

        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Dict:
        """
        Verify and decode JWT token.

        Raises:
            jwt.ExpiredSignatureError: If token is expired
            jwt.InvalidTokenError: If token is invalid
        """
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                options={"verify_signature": True, "verify_aud": self.audience is not None, "require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise jwt.ExpiredSignatureError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise jwt.InvalidTokenError(f"Invalid token: {e}")

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify an access token.

        Identity provider tokens may omit ``type``; a token typed as anything
        other than ``access`` is rejected.

        Raises:
            jwt.InvalidTokenError: If not an access token
        """
        payload = self.verify_token(token)

        if payload.get("type", "access") != "access":
            raise jwt.InvalidTokenError("Not an access token")

        return payload


# Global JWT auth instance
jwt_auth = JWTAuth()
