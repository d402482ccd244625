"""
Database model for provider connections.

All tokens are encrypted using Fernet before storage and decrypted only for
the duration of a sync pass (see app/core/encryption.py).
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, String, Text, UniqueConstraint
from sqlmodel import Field, Index, Column as SQLModelColumn

from app.core.time_utils import utc_now
from app.models.base import BaseModel, JSONType
from app.models.enums import IntegrationProvider, IntegrationStatus


class Integration(BaseModel, table=True):
    """
    A user's connection to a third-party task or calendar provider.

    Fields:
        user_id: Local user who owns the connection; becomes assignee/creator of synced tasks
        workspace_id: Local workspace synced records belong to
        provider: Which service this connects to
        status: ``active`` or ``error`` as left by the last pass
        access_token_encrypted: Encrypted OAuth access token or API token
        refresh_token_encrypted: Encrypted OAuth refresh token, absent for non-expiring tokens
        token_expires_at: Access token expiry; absence means "assume expired"
        config: Provider-specific configuration (``project_id``, ``sync_direction``...)
        external_data: Provider profile data captured when connecting
        last_synced_at: When the last successful pass finished
        last_error / last_error_at: Last fatal failure

    Security:
        - Never expose encrypted tokens in API responses
        - Changing SECRET_KEY invalidates all encrypted tokens
    """
    __tablename__ = "integration"

    user_id: uuid.UUID = Field(nullable=False, index=True)
    workspace_id: uuid.UUID = Field(nullable=False, index=True)

    provider: IntegrationProvider = Field(
        sa_column=Column(String(50), nullable=False, index=True),
        description="Integration provider type"
    )

    status: IntegrationStatus = Field(
        default=IntegrationStatus.ACTIVE,
        sa_column=Column(String(20), nullable=False, default=IntegrationStatus.ACTIVE.value),
    )

    access_token_encrypted: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Encrypted OAuth access token or API token"
    )

    refresh_token_encrypted: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
        description="Encrypted OAuth refresh token"
    )

    token_expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    config: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=SQLModelColumn(JSONType(), nullable=False, default=dict),
        description="Provider-specific configuration",
    )

    external_data: Dict[str, Any] = Field(
        default_factory=dict,
        sa_column=SQLModelColumn(JSONType(), nullable=False, default=dict),
        description="Provider profile data",
    )

    last_synced_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    last_error: Optional[str] = Field(
        default=None,
        sa_column=Column(Text, nullable=True),
    )

    last_error_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )

    connected_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

    __table_args__ = (
        # One connection per user, workspace and provider
        UniqueConstraint("user_id", "workspace_id", "provider", name="uq_integration_user_workspace_provider"),
        Index("idx_integration_provider_status", "provider", "status"),
    )

    @property
    def project_id(self) -> Optional[uuid.UUID]:
        """Local project synced tasks are filed under, if configured."""
        value = (self.config or {}).get("project_id")
        if not value:
            return None
        try:
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        except ValueError:
            return None
