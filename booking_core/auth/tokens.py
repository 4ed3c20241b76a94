"""Internal bearer credentials: HS256 JWTs signed with a server-held secret."""

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from booking_core.errors import TokenExpired, TokenInvalid

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ('user_id', 'organization_id', 'revocation_marker', 'exp', 'iat')


def looks_internal(token):
    """Internal credentials are three non-empty dot-separated segments."""
    parts = token.split('.')
    return len(parts) == 3 and all(parts)


class TokenService:
    """
    Issues and verifies internal credentials.

    Verification is stateless apart from the revocation marker, which the
    caller compares against the user record. ``decode`` checks the
    signature and claim shape but leaves expiry to ``check_expiry`` so a
    revoked credential is reported as revoked even after it has expired.
    """

    def __init__(self, secret_key, algorithm='HS256', expiration=timedelta(hours=24)):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expiration = expiration

    def issue(self, user, now=None):
        now = now or datetime.now(timezone.utc)
        claims = {
            'user_id': user.id,
            'organization_id': user.organization_id,
            'email': user.email,
            'revocation_marker': user.jti,
            'iat': int(now.timestamp()),
            'exp': int((now + self.expiration).timestamp()),
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def decode(self, token):
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={'verify_exp': False}
            )
        except JWTError as e:
            logger.warning(f"[AUTH] Rejected credential: {e}")
            raise TokenInvalid() from e

        missing = [name for name in REQUIRED_CLAIMS if claims.get(name) is None]
        if missing:
            logger.warning(f"[AUTH] Credential missing claims: {', '.join(missing)}")
            raise TokenInvalid()
        if not isinstance(claims['user_id'], int) or not isinstance(claims['organization_id'], int):
            raise TokenInvalid()
        return claims

    def check_expiry(self, claims, now=None):
        now = now or datetime.now(timezone.utc)
        if claims['exp'] <= now.timestamp():
            raise TokenExpired()
