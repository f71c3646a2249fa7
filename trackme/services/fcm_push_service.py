"""
Firebase Cloud Messaging (HTTP v1) push service.

Authenticates with a Google service account: an RS256-signed JWT assertion is
exchanged for a short-lived access token, which is then used for per-device
message sends.
"""

import json
import time
from dataclasses import dataclass
from typing import Any

import httpx
import jwt

from trackme.config import settings
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600


class FcmPushError(Exception):
    """Raised when FCM authentication or a send fails."""

    def __init__(self, message: str, status_code: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.recoverable = recoverable


@dataclass(slots=True)
class ServiceAccount:
    project_id: str
    client_email: str
    private_key: str
    token_uri: str = GOOGLE_TOKEN_URL

    @classmethod
    def from_json(cls, raw: str | None) -> "ServiceAccount":
        if not raw:
            raise FcmPushError("Missing GOOGLE_SERVICE_ACCOUNT_JSON", recoverable=False)
        try:
            data = json.loads(raw)
            return cls(
                project_id=data["project_id"],
                client_email=data["client_email"],
                private_key=data["private_key"],
                token_uri=data.get("token_uri") or GOOGLE_TOKEN_URL,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise FcmPushError(f"Invalid service account JSON: {e}", recoverable=False) from e


class FcmPushService:
    def __init__(
        self,
        service_account: ServiceAccount,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.service_account = service_account
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, timeout: float = 30.0) -> "FcmPushService":
        return cls(ServiceAccount.from_json(settings.GOOGLE_SERVICE_ACCOUNT_JSON), timeout=timeout)

    def build_assertion(self, now: int | None = None) -> str:
        """Sign the service-account JWT assertion (RS256)."""
        issued_at = int(now if now is not None else time.time())
        claims = {
            "iss": self.service_account.client_email,
            "scope": FCM_SCOPE,
            "aud": GOOGLE_TOKEN_URL,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
        }
        try:
            return jwt.encode(claims, self.service_account.private_key, algorithm="RS256")
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise FcmPushError(
                f"Failed to sign service account assertion: {e}", recoverable=False
            ) from e

    async def get_access_token(self) -> str:
        """Exchange the signed assertion for an OAuth access token."""
        data = {"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.service_account.token_uri, data=data)
        except httpx.RequestError as e:
            raise FcmPushError(f"Network error obtaining FCM access token: {e}") from e

        if not response.is_success:
            logger.error("FCM token exchange failed", status_code=response.status_code)
            raise FcmPushError(
                f"Failed to get access token: {response.status_code}",
                status_code=response.status_code,
            )

        access_token = response.json().get("access_token")
        if not access_token:
            raise FcmPushError("Token endpoint response did not include access_token")
        return access_token

    def build_message(
        self, device_token: str, title: str, body: str, data: dict[str, str]
    ) -> dict[str, Any]:
        return {
            "message": {
                "token": device_token,
                "notification": {"title": title, "body": body},
                "data": data,
                "android": {"priority": "high"},
                "apns": {"payload": {"aps": {"content-available": 1}}},
            }
        }

    async def send(
        self,
        access_token: str,
        device_token: str,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> None:
        """Send one notification to one device; raises FcmPushError on failure."""
        url = FCM_SEND_URL.format(project_id=self.service_account.project_id)
        payload = self.build_message(device_token, title, body, data)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
        except httpx.RequestError as e:
            raise FcmPushError(f"Network error sending FCM message: {e}") from e

        if not response.is_success:
            raise FcmPushError(
                f"FCM send failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
                recoverable=response.status_code >= 500,
            )
