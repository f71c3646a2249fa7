"""
Gmail connection lifecycle: connect, revoke and rescan.

Connecting exchanges the OAuth code, stores the encrypted tokens and queues the
first deep scan. Revocation (Google's cross-account webhook) clears the tokens
and cancels any scan still waiting for them.
"""

import uuid
from typing import Any

from trackme.features.subscription_discovery.domain import ScanJob, ScanType
from trackme.features.subscription_discovery.queue import ScanQueue
from trackme.features.subscription_discovery.repository import (
    IntegrationRepository,
    ScanHistoryRepository,
)
from trackme.infrastructure.observability.logging import get_logger
from trackme.services.google_oauth_service import (
    GoogleOAuthError,
    GoogleOAuthService,
    google_oauth_service,
)

logger = get_logger(__name__)

REVOKED_SCAN_REASON = "User revoked Gmail access"
INTEGRATION_NOT_FOUND = "Integration not found"


def _is_user_id(state: str | None) -> bool:
    try:
        uuid.UUID(state or "")
    except ValueError:
        return False
    return True


def estimated_scan_time(scan_type: ScanType) -> str:
    return "5-10 minutes" if scan_type == ScanType.DEEP else "1-2 minutes"


class ConnectionServiceError(Exception):
    """Raised when a connection operation cannot complete."""

    def __init__(self, message: str, error_code: str | None = None, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code


class GmailConnectionService:
    def __init__(
        self,
        oauth_service: GoogleOAuthService | None = None,
        integrations=IntegrationRepository,
        scan_queue: ScanQueue | None = None,
        scan_history=ScanHistoryRepository,
    ):
        self.oauth_service = oauth_service or google_oauth_service
        self.integrations = integrations
        self.scan_queue = scan_queue or ScanQueue()
        self.scan_history = scan_history

    async def connect(
        self,
        user_id: str,
        code: str,
        redirect_uri: str | None = None,
        scan_type: ScanType = ScanType.DEEP,
    ) -> dict[str, Any]:
        """
        Complete the OAuth flow for a user and queue their first scan.

        Raises:
            ConnectionServiceError: Code exchange failed, Gmail scope missing,
                or the integration could not be stored
        """
        try:
            tokens = await self.oauth_service.exchange_code_for_tokens(code, redirect_uri)
            if not tokens.has_gmail_access():
                raise ConnectionServiceError(
                    "Gmail read access was not granted",
                    error_code="insufficient_scope",
                    status_code=400,
                )
            email = await self.oauth_service.get_user_email(tokens.access_token)
        except GoogleOAuthError as e:
            logger.warning(
                "Gmail OAuth exchange failed", user_id=user_id, error_code=e.error_code
            )
            raise ConnectionServiceError(
                e.message,
                error_code=e.error_code or "oauth_failed",
                status_code=503 if e.error_code == "config" else 400,
            ) from e

        await self.integrations.upsert(
            user_id=user_id,
            provider_user_id=email,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=tokens.expires_at,
            scopes=tokens.scopes,
        )

        job = await self._queue_scan(user_id, scan_type)
        logger.info(
            "Gmail connected", user_id=user_id, scan_job_id=job.id, scan_type=scan_type.value
        )

        return {
            "success": True,
            "email": email,
            "scan_job_id": job.id,
            "scan_type": scan_type.value,
            "estimated_time": estimated_scan_time(scan_type),
        }

    async def handle_callback(self, code: str, state: str) -> dict[str, Any]:
        """Browser redirect flow; state carries the user id."""
        if not _is_user_id(state) or not await self.integrations.user_exists(state):
            raise ConnectionServiceError(
                "Invalid OAuth state", error_code="invalid_state", status_code=400
            )
        return await self.connect(state, code)

    async def revoke(self, token: str) -> dict[str, Any]:
        integration = await self.integrations.find_by_token(token)
        if integration is None:
            logger.info("Revocation for unknown token")
            return {"success": True, "message": INTEGRATION_NOT_FOUND}

        await self.integrations.mark_revoked(integration.id)
        cancelled = await self.scan_queue.cancel_for_user(integration.user_id, REVOKED_SCAN_REASON)

        logger.info(
            "Gmail access revoked",
            user_id=integration.user_id,
            integration_id=integration.id,
            scans_cancelled=cancelled,
        )
        return {"success": True, "message": "Integration revoked", "scans_cancelled": cancelled}

    async def rescan(self, user_id: str) -> dict[str, Any]:
        """Queue a manual scan; an already-open scan is returned instead of a second one."""
        integration = await self.integrations.get_active(user_id)
        if integration is None:
            raise ConnectionServiceError(
                "No active Gmail connection", error_code="no_integration", status_code=409
            )

        open_job = await self.scan_queue.find_open_job(user_id)
        if open_job is not None:
            return self._scan_response(open_job, already_queued=True)

        job = await self._queue_scan(user_id, ScanType.MANUAL)
        return self._scan_response(job, already_queued=False)

    async def _queue_scan(self, user_id: str, scan_type: ScanType) -> ScanJob:
        job = await self.scan_queue.enqueue(user_id, scan_type)
        try:
            await self.scan_history.create(user_id, job.id, scan_type.value)
        except Exception as e:
            logger.warning("Could not record scan history", scan_job_id=job.id, error=str(e))
        return job

    def _scan_response(self, job: ScanJob, already_queued: bool) -> dict[str, Any]:
        scan_type = ScanType.parse(job.scan_type, ScanType.MANUAL)
        return {
            "scan_job_id": job.id,
            "scan_type": scan_type.value,
            "status": job.status,
            "already_queued": already_queued,
            "estimated_time": estimated_scan_time(scan_type),
        }


gmail_connection_service = GmailConnectionService()
