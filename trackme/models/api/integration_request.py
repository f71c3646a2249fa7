# models/api/integration_request.py
from pydantic import BaseModel, Field

from trackme.features.subscription_discovery.domain import ScanType


class GmailConnectRequest(BaseModel):
    """Authorization code handed over by the mobile app after Google consent."""

    code: str = Field(..., min_length=1, description="Authorization code from OAuth flow")
    redirect_uri: str | None = Field(
        default=None, description="Redirect URI the client used; defaults to the configured one"
    )
    scan_type: ScanType = Field(default=ScanType.DEEP, description="Scan to queue after connecting")


class SuggestionWebhookRecord(BaseModel):
    user_id: str


class SuggestionWebhookPayload(BaseModel):
    """Database webhook body sent when a suggestion row is inserted."""

    type: str | None = None
    table: str | None = None
    record: SuggestionWebhookRecord
