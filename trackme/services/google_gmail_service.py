"""
Google Gmail API Service for the mailbox scan.
Read-only client: message search with pagination and metadata fetches.
"""

import asyncio
from typing import Any

import httpx

from trackme.infrastructure.observability.logging import get_logger
from trackme.models.domain.gmail_domain import GmailMessageMetadata

logger = get_logger(__name__)

# Google Gmail API configuration
GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1"
GMAIL_USER_ID = "me"
METADATA_HEADERS = ("Subject", "From", "Date")

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
GMAIL_MAX_PAGE_SIZE = 500  # API limit for messages.list


class GoogleGmailError(Exception):
    """Custom exception for Google Gmail API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}

    @property
    def recoverable(self) -> bool:
        return self.status_code is None or self.status_code in RETRY_STATUS_CODES


class GoogleGmailService:
    """
    Service for Google Gmail API operations.

    Handles HTTP requests, authentication, error mapping and retry logic.
    Domain objects are built by gmail_domain.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_factor: float = BACKOFF_FACTOR,
    ):
        self.timeout = timeout
        self.backoff_factor = backoff_factor
        self._transport = transport

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def _get_with_retry(
        self, access_token: str, path: str, params: Any, operation: str
    ) -> httpx.Response:
        """GET with retry/backoff on transient statuses and network errors."""
        url = f"{GMAIL_API_BASE_URL}/users/{GMAIL_USER_ID}/{path}"
        headers = self._get_auth_headers(access_token)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.get(url, headers=headers, params=params)
                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise GoogleGmailError(
                            f"Gmail network error during {operation}: {exc}"
                        ) from exc

                    wait_time = self.backoff_factor**attempt
                    logger.warning(
                        "Gmail request error, retrying",
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
                        "Gmail transient status",
                        operation=operation,
                        status_code=response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue

                return response

        raise GoogleGmailError(f"{operation} failed: retries exhausted")

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Gmail API response.

        Raises:
            GoogleGmailError: If response contains errors
        """
        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Gmail API {operation} response", error=str(e))
                raise GoogleGmailError(f"Invalid response format: {e}") from e

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Gmail API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleGmailError(
                f"Gmail API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = str(error_info.get("code", response.status_code))
        error_message = error_info.get("message", "Unknown Gmail API error")

        logger.error(
            f"Gmail API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise GoogleGmailError(
            self._map_gmail_error(error_code, error_message),
            error_code=error_code,
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_gmail_error(self, error_code: str, error_message: str) -> str:
        error_mappings = {
            "400": f"Invalid Gmail request: {error_message}",
            "401": "Gmail authorization expired. Please reconnect.",
            "403": f"Gmail access denied: {error_message}",
            "404": "Email message not found.",
            "429": "Gmail rate limit exceeded.",
            "500": "Gmail service temporarily unavailable.",
            "503": "Gmail service temporarily unavailable.",
        }
        return error_mappings.get(error_code, f"Gmail error: {error_message}")

    async def list_message_ids(
        self,
        access_token: str,
        query: str,
        max_results: int = 100,
        page_token: str | None = None,
    ) -> tuple[list[str], str | None]:
        """
        Fetch one page of message ids matching a search query.

        Returns:
            Tuple of (message ids, next page token or None)
        """
        params = {"q": query, "maxResults": min(max_results, GMAIL_MAX_PAGE_SIZE)}
        if page_token:
            params["pageToken"] = page_token

        response = await self._get_with_retry(access_token, "messages", params, "list_messages")
        data = self._handle_api_response(response, "list_messages")

        message_ids = [msg["id"] for msg in data.get("messages", []) if msg.get("id")]
        return message_ids, data.get("nextPageToken")

    async def search_message_ids(
        self,
        access_token: str,
        query: str,
        max_messages: int = 500,
        page_size: int = 100,
    ) -> list[str]:
        """
        Page through search results until exhausted or max_messages is reached.

        Ids are de-duplicated while preserving the provider's ordering.
        """
        seen: set[str] = set()
        message_ids: list[str] = []
        page_token: str | None = None
        pages = 0

        while len(message_ids) < max_messages:
            remaining = max_messages - len(message_ids)
            page_ids, page_token = await self.list_message_ids(
                access_token, query, max_results=min(page_size, remaining), page_token=page_token
            )
            pages += 1

            for message_id in page_ids:
                if message_id in seen:
                    continue
                seen.add(message_id)
                message_ids.append(message_id)
                if len(message_ids) >= max_messages:
                    break

            if not page_token:
                break

        logger.info(
            "Gmail search completed",
            pages=pages,
            message_count=len(message_ids),
            capped=len(message_ids) >= max_messages,
        )
        return message_ids

    async def get_message_metadata(
        self, access_token: str, message_id: str
    ) -> GmailMessageMetadata:
        """Get Subject/From/Date headers plus snippet for a single message."""
        params = [("format", "metadata")] + [
            ("metadataHeaders", header) for header in METADATA_HEADERS
        ]
        response = await self._get_with_retry(
            access_token, f"messages/{message_id}", params, "get_message"
        )
        data = self._handle_api_response(response, "get_message")
        return GmailMessageMetadata(data)

