# models/api/integration_response.py
"""
Response models for the Gmail integration and scan endpoints.
"""

from pydantic import BaseModel, Field


class GmailConnectResponse(BaseModel):
    success: bool = Field(..., description="Whether the connection was stored")
    email: str = Field(..., description="Connected mailbox address")
    scan_job_id: int = Field(..., description="Queued scan job")
    scan_type: str = Field(..., description="Type of the queued scan")
    estimated_time: str = Field(..., description="Rough time until suggestions appear")


class RevokeResponse(BaseModel):
    success: bool
    message: str
    scans_cancelled: int = 0


class RescanResponse(BaseModel):
    scan_job_id: int
    scan_type: str
    status: str
    already_queued: bool = Field(
        default=False, description="True when an open scan was returned instead of a new one"
    )
    estimated_time: str


class WebhookAcceptedResponse(BaseModel):
    accepted: bool = True
    user_id: str
