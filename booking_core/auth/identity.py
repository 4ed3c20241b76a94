"""External identity provider verification."""

import logging
from dataclasses import dataclass

import httpx

from booking_core.errors import Unavailable

logger = logging.getLogger(__name__)


class IdentityVerificationError(Exception):
    """The identity provider did not vouch for the presented token."""


@dataclass(frozen=True)
class ExternalIdentity:
    subject: str
    email: str
    name: str = ''

    @property
    def first_name(self):
        parts = self.name.split()
        return parts[0] if parts else ''

    @property
    def last_name(self):
        return ' '.join(self.name.split()[1:])


class IdentityVerifier:
    """Collaborator interface: turn an opaque token into a verified identity."""

    def verify(self, token):
        raise NotImplementedError


class GoogleIdentityVerifier(IdentityVerifier):
    """Verifies Google OAuth access tokens against the tokeninfo endpoint."""

    TOKENINFO_URL = 'https://oauth2.googleapis.com/tokeninfo'

    def __init__(self, client_id, timeout=5):
        self.client_id = client_id
        self.timeout = timeout

    def verify(self, token):
        if not self.client_id:
            raise IdentityVerificationError('Google sign-in is not configured')

        try:
            response = httpx.get(
                self.TOKENINFO_URL,
                params={'access_token': token},
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.error(f"Identity provider timed out: {e}")
            raise Unavailable('Identity provider unavailable') from e
        except httpx.HTTPError as e:
            raise IdentityVerificationError(f'Identity provider request failed: {e}') from e

        if response.status_code != 200:
            raise IdentityVerificationError(f'Identity provider returned HTTP {response.status_code}')

        data = response.json()
        audience = data.get('aud') or data.get('azp')
        if audience != self.client_id:
            raise IdentityVerificationError('Token was issued for another client')
        if not data.get('sub') or not data.get('email'):
            raise IdentityVerificationError('Token carries no subject or email')
        if str(data.get('email_verified', '')).lower() != 'true':
            raise IdentityVerificationError('Email address is not verified')

        return ExternalIdentity(
            subject=data['sub'],
            email=data['email'],
            name=data.get('name', '')
        )
