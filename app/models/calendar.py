"""
Calendars and events mirrored from calendar providers.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlmodel import Field, Column as SQLModelColumn

from app.models.base import BaseModel, JSONType


class Calendar(BaseModel, table=True):
    """A remote calendar belonging to one integration."""
    __tablename__ = "calendar"

    integration_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("integration.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    external_id: str = Field(sa_column=Column(String(1024), nullable=False))
    name: str = Field(sa_column=Column(String(512), nullable=False))
    color: Optional[str] = Field(default=None, max_length=32)
    source: str = Field(sa_column=Column(String(50), nullable=False))
    is_enabled: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    workspace_id: uuid.UUID = Field(nullable=False, index=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "integration_id", "external_id", "source", "workspace_id", "user_id",
            name="uq_calendar_integration_external",
        ),
    )


class Event(BaseModel, table=True):
    """A calendar event. Keyed by calendar, remote id, source, workspace and user."""
    __tablename__ = "event"

    calendar_id: uuid.UUID = Field(
        sa_column=Column(
            ForeignKey("calendar.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    external_id: str = Field(sa_column=Column(String(1024), nullable=False))
    title: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    start_time: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    end_time: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    is_all_day: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    source: str = Field(sa_column=Column(String(50), nullable=False))
    web_link: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    meeting_url: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    location_label: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    location_address: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    external_data: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=SQLModelColumn(JSONType(), nullable=True),
    )
    workspace_id: uuid.UUID = Field(nullable=False, index=True)
    user_id: uuid.UUID = Field(nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint(
            "calendar_id", "external_id", "source", "workspace_id", "user_id",
            name="uq_event_calendar_external",
        ),
    )
