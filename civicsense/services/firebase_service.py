"""
Firebase Service - External identity verification for Firebase sign-in
"""
import logging
from typing import Dict, Optional

import httpx

from civicsense.config import settings
from civicsense.errors import Unauthorized, ValidationFailed

logger = logging.getLogger(__name__)


class FirebaseIdentityVerifier:
    """
    Confirms who a Firebase user is.

    With FIREBASE_API_KEY set, the ID token is checked against the Identity
    Toolkit accounts:lookup endpoint and the uid/email come from Firebase.
    Without it the client-supplied uid/email are accepted as-is.
    """

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        self.lookup_url = settings.FIREBASE_LOOKUP_URL
        self.timeout = 10.0
        self._transport = transport

    @property
    def api_key(self) -> str:
        return settings.FIREBASE_API_KEY

    def verify(
        self,
        id_token: Optional[str],
        claimed_uid: str,
        claimed_email: str
    ) -> Dict[str, str]:
        if not claimed_uid or not claimed_email:
            raise ValidationFailed("Firebase UID and email are required")

        if not self.api_key:
            return {"uid": claimed_uid, "email": claimed_email}

        if not id_token:
            raise Unauthorized("Firebase ID token is required")

        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self.lookup_url,
                    params={"key": self.api_key},
                    json={"idToken": id_token}
                )
                response.raise_for_status()
                users = response.json().get("users") or []
        except httpx.HTTPStatusError as e:
            logger.warning(f"Firebase token rejected: {e.response.status_code}")
            raise Unauthorized("Invalid Firebase token")
        except httpx.HTTPError as e:
            logger.error(f"Firebase lookup error: {e}")
            raise Unauthorized("Could not verify Firebase token")

        if not users:
            raise Unauthorized("Invalid Firebase token")

        account = users[0]
        uid = account.get("localId")
        if uid != claimed_uid:
            raise Unauthorized("Firebase token does not match user")

        return {"uid": uid, "email": account.get("email") or claimed_email}


# Singleton instance
firebase_verifier = FirebaseIdentityVerifier()
