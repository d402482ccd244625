"""
Pydantic schemas for integration API responses.

Response Schemas:
- IntegrationStatusResponse: Current status of an integration
- SyncTriggerResponse: A sync pass queued for background execution

Design Principles:
- Never expose encrypted tokens in responses
"""
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.enums import IntegrationProvider, IntegrationStatus


class IntegrationStatusResponse(BaseModel):
    """
    Current state of one integration.

    ``status`` is ``error`` after a fatal sync failure until the next
    successful pass; ``last_error`` then carries the failure message.
    """
    id: uuid.UUID
    provider: IntegrationProvider
    status: IntegrationStatus
    user_id: uuid.UUID
    workspace_id: uuid.UUID
    connected_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = Field(
        default=None,
        description="Completion time of the last successful sync pass"
    )
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = Field(
        default=None,
        description="Access token expiry, already reduced by the refresh margin"
    )


class SyncTriggerResponse(BaseModel):
    integration_id: uuid.UUID
    provider: IntegrationProvider
    task_id: str = Field(..., description="Celery task id of the queued pass")
    status: str = "queued"
