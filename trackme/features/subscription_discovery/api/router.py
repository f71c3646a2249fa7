"""
Subscription discovery routes.

Gmail connect/revoke, manual rescans and the suggestion webhook that triggers
push notifications.
"""

import hmac
from html import escape

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    status,
)
from fastapi.responses import HTMLResponse

from trackme.auth.verify import current_user_id
from trackme.config import settings
from trackme.features.subscription_discovery.dependencies import (
    get_connection_service,
    get_notification_worker,
)
from trackme.features.subscription_discovery.pipeline.notify import NotificationWorker
from trackme.features.subscription_discovery.services import (
    ConnectionServiceError,
    GmailConnectionService,
)
from trackme.infrastructure.observability.logging import get_logger
from trackme.models.api.integration_request import GmailConnectRequest, SuggestionWebhookPayload
from trackme.models.api.integration_response import (
    GmailConnectResponse,
    RescanResponse,
    RevokeResponse,
    WebhookAcceptedResponse,
)

logger = get_logger(__name__)

router = APIRouter(tags=["subscription-discovery"])

_CALLBACK_PAGE = """<!DOCTYPE html>
<html>
  <head><title>{title}</title></head>
  <body>
    <h1>{title}</h1>
    <p>{message}</p>
  </body>
</html>"""


def _callback_page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    return HTMLResponse(
        _CALLBACK_PAGE.format(title=escape(title), message=escape(message)),
        status_code=status_code,
    )


def _raise_http(e: ConnectionServiceError) -> None:
    raise HTTPException(status_code=e.status_code, detail=e.message) from None


@router.post("/integrations/google/connect", response_model=GmailConnectResponse)
async def connect_gmail(
    request: GmailConnectRequest,
    user_id: str = Depends(current_user_id),
    service: GmailConnectionService = Depends(get_connection_service),
):
    """
    Exchange the mobile app's authorization code and queue the first scan.

    Raises:
        400: Code exchange failed or Gmail access not granted
        401: Invalid authentication token
        503: Google OAuth not configured
    """
    try:
        result = await service.connect(
            user_id, request.code, redirect_uri=request.redirect_uri, scan_type=request.scan_type
        )
    except ConnectionServiceError as e:
        logger.warning("Gmail connect failed", user_id=user_id, error_code=e.error_code)
        _raise_http(e)
    except Exception as e:
        logger.error(
            "Unexpected error during Gmail connect",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to connect Gmail",
        ) from None

    return GmailConnectResponse(**result)


@router.get("/integrations/google/callback", response_class=HTMLResponse)
async def gmail_oauth_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    service: GmailConnectionService = Depends(get_connection_service),
):
    """Browser redirect target for the web consent flow."""
    if error:
        return _callback_page("Gmail not connected", f"Google returned: {error}", 400)
    if not code or not state:
        return _callback_page("Gmail not connected", "Missing code or state.", 400)

    try:
        result = await service.handle_callback(code, state)
    except ConnectionServiceError as e:
        logger.warning("Gmail callback failed", error_code=e.error_code)
        return _callback_page("Gmail not connected", e.message, e.status_code)
    except Exception as e:
        logger.error("Unexpected error during Gmail callback", error=str(e))
        return _callback_page("Gmail not connected", "Something went wrong. Please try again.", 500)

    return _callback_page(
        "Gmail connected",
        f"{result['email']} is connected. We are scanning for subscriptions now, "
        f"this usually takes {result['estimated_time']}. You can close this window.",
    )


@router.post("/integrations/google/revoke", response_model=RevokeResponse)
async def revoke_gmail(
    request: Request,
    service: GmailConnectionService = Depends(get_connection_service),
):
    """
    Google revocation webhook. Accepts a form or JSON body carrying `token`
    (or `refresh_token`).
    """
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith("application/json"):
            body = await request.json()
        else:
            body = dict(await request.form())
    except ValueError:
        body = {}

    token = None
    if isinstance(body, dict):
        token = body.get("token") or body.get("refresh_token")
    if not token or not isinstance(token, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing token")

    try:
        result = await service.revoke(token)
    except Exception as e:
        logger.error("Revocation failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to revoke integration"
        ) from None

    return RevokeResponse(**result)


@router.post("/scans/rescan", response_model=RescanResponse)
async def rescan(
    user_id: str = Depends(current_user_id),
    service: GmailConnectionService = Depends(get_connection_service),
):
    """Queue a manual scan for the caller."""
    try:
        result = await service.rescan(user_id)
    except ConnectionServiceError as e:
        _raise_http(e)

    logger.info("Manual rescan requested", user_id=user_id, **result)
    return RescanResponse(**result)


@router.post(
    "/webhooks/suggestions",
    response_model=WebhookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def suggestion_created(
    payload: SuggestionWebhookPayload,
    background_tasks: BackgroundTasks,
    x_webhook_secret: str | None = Header(default=None),
    worker: NotificationWorker = Depends(get_notification_worker),
):
    """Schedule a delayed push notification for the suggestion's owner."""
    if settings.WEBHOOK_SECRET and not hmac.compare_digest(
        x_webhook_secret or "", settings.WEBHOOK_SECRET
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret"
        )

    user_id = payload.record.user_id
    background_tasks.add_task(worker.notify_in_background, user_id)
    logger.info("Notification scheduled", user_id=user_id)
    return WebhookAcceptedResponse(user_id=user_id)
