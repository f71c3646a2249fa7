"""
Google OAuth Service for the Gmail read-only integration.
Handles authorization code exchange, access token refresh and mailbox lookup.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import httpx

from trackme.config import settings
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# OAuth configuration
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4, 8 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.response_data = response_data or {}

    @property
    def is_invalid_grant(self) -> bool:
        return self.error_code == "invalid_grant"


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        """Check if token response contains required fields."""
        return bool(self.access_token and self.token_type)

    def has_gmail_access(self) -> bool:
        return "gmail.readonly" in self.scope or "mail.google.com" in self.scope

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 operations.

    Token endpoint calls go through _post_with_retry, which retries transient
    statuses and network errors with exponential backoff.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_factor: float = BACKOFF_FACTOR,
    ):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.gmail_redirect_uri()
        self.timeout = timeout
        self.backoff_factor = backoff_factor
        self._transport = transport

    def _validate_config(self) -> None:
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured", error_code="config")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured", error_code="config")

    async def _post_with_retry(self, url: str, data: dict, operation: str) -> httpx.Response:
        """
        Perform POST request with retry/backoff handling.

        Args:
            url: Target URL
            data: Form data payload
            operation: Operation name for logging context
        """
        headers = {"Content-Type": "application/x-www-form-urlencoded"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.post(url, data=data, headers=headers)
                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = self.backoff_factor**attempt
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    wait_time = self.backoff_factor**attempt
                    logger.warning(
                        "Google OAuth transient status",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

        raise GoogleOAuthError(f"{operation} failed: retries exhausted")

    async def exchange_code_for_tokens(
        self, authorization_code: str, redirect_uri: str | None = None
    ) -> TokenResponse:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            authorization_code: Authorization code from OAuth consent
            redirect_uri: Redirect URI used by the client; defaults to the configured one

        Raises:
            GoogleOAuthError: If token exchange fails
        """
        self._validate_config()
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": authorization_code,
            "grant_type": "authorization_code",
            "redirect_uri": redirect_uri or self.redirect_uri,
        }

        try:
            logger.info("Exchanging authorization code for Gmail tokens")
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, "code_exchange")
            return self._handle_token_response(response, "code_exchange")

        except GoogleOAuthError:
            raise
        except httpx.RequestError as e:
            logger.error(
                "Network error during token exchange", error=str(e), error_type=type(e).__name__
            )
            raise GoogleOAuthError(f"Network error during token exchange: {e}") from e

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Google usually omits refresh_token on refresh; the existing one is
        carried over in that case.

        Raises:
            GoogleOAuthError: If token refresh fails (error_code "invalid_grant"
            when the refresh token was revoked or already rotated)
        """
        self._validate_config()
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await self._post_with_retry(GOOGLE_TOKEN_URL, data, "token_refresh")
            token_response = self._handle_token_response(response, "token_refresh")

            if not token_response.refresh_token:
                token_response.refresh_token = refresh_token

            return token_response

        except GoogleOAuthError:
            raise
        except httpx.RequestError as e:
            logger.error(
                "Network error during token refresh", error=str(e), error_type=type(e).__name__
            )
            raise GoogleOAuthError(f"Network error during token refresh: {e}") from e

    async def get_user_email(self, access_token: str) -> str:
        """Read the connected mailbox address from Google userinfo."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.get(
                    GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}
                )
        except httpx.RequestError as e:
            raise GoogleOAuthError(f"Network error fetching user info: {e}") from e

        if not response.is_success:
            logger.error("Google userinfo request failed", status_code=response.status_code)
            raise GoogleOAuthError(
                f"Failed to fetch Google user info (HTTP {response.status_code})",
                error_code="userinfo_failed",
            )

        email = response.json().get("email")
        if not email:
            raise GoogleOAuthError("Google user info did not include an email address")
        return email

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Handle and validate token response from Google.

        Raises:
            GoogleOAuthError: If response is invalid or contains errors
        """
        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Google {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})"
                ) from None

            error_code = error_data.get("error", "unknown_error")
            error_description = error_data.get("error_description", "No description provided")

            logger.error(
                f"Google {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_description,
            )
            raise GoogleOAuthError(
                self._map_google_error(error_code),
                error_code=error_code,
                response_data=error_data,
            )

        try:
            token_response = TokenResponse(response.json())
        except ValueError as e:
            logger.error(f"Failed to parse Google {operation} response", error=str(e))
            raise GoogleOAuthError(f"Failed to parse Google response: {e}") from e

        if not token_response.is_valid():
            logger.error(
                f"Invalid token response from Google {operation}",
                has_access_token=bool(token_response.access_token),
            )
            raise GoogleOAuthError("Invalid token response from Google")

        logger.info(
            f"Google {operation} successful",
            expires_in=token_response.expires_in,
            has_refresh_token=bool(token_response.refresh_token),
            has_gmail_access=token_response.has_gmail_access(),
        )
        return token_response

    def _map_google_error(self, error_code: str) -> str:
        error_messages = {
            "access_denied": "Gmail access was denied.",
            "invalid_grant": "Authorization grant expired or revoked.",
            "invalid_client": "Gmail connection configuration error.",
            "invalid_request": "Invalid Gmail connection request.",
            "unauthorized_client": "Gmail connection not authorized.",
            "invalid_scope": "Invalid Gmail permissions requested.",
        }
        return error_messages.get(error_code, f"Gmail connection failed ({error_code}).")


# Singleton instance for application use
google_oauth_service = GoogleOAuthService()
