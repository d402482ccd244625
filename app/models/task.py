"""
Local task records mirrored from task providers.
"""
import uuid
import datetime as dt
from typing import Any, Dict, Optional

from sqlalchemy import Column, Date, DateTime, String, Text, UniqueConstraint
from sqlmodel import Field, Index, Column as SQLModelColumn

from app.models.base import BaseModel, JSONType
from app.models.enums import TaskStatus


class Task(BaseModel, table=True):
    """
    A task, either created locally or mirrored from a provider.

    Synced tasks are identified by (integration_source, external_id, host,
    workspace_id); every sync upsert keys on that tuple. ``status``,
    ``completed_at`` and ``date`` belong to the local app and are never
    overwritten by an upsert.
    """
    __tablename__ = "task"

    name: str = Field(sa_column=Column(Text, nullable=False))
    description: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=SQLModelColumn(JSONType(), nullable=True),
        description="Rich-text document (TipTap JSON)",
    )

    workspace_id: uuid.UUID = Field(nullable=False, index=True)
    integration_source: Optional[str] = Field(
        default=None,
        sa_column=Column(String(50), nullable=True, index=True),
    )
    external_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True),
    )
    external_data: Optional[Dict[str, Any]] = Field(
        default=None,
        sa_column=SQLModelColumn(JSONType(), nullable=True),
        description="Raw provider payload",
    )
    host: Optional[str] = Field(
        default=None,
        sa_column=Column(String(1024), nullable=True),
        description="Canonical URL of the task or provider",
    )

    assignee: Optional[uuid.UUID] = Field(default=None, index=True)
    creator: Optional[uuid.UUID] = Field(default=None, index=True)
    project_id: Optional[uuid.UUID] = Field(default=None, index=True)

    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        sa_column=Column(String(20), nullable=False, default=TaskStatus.PENDING.value),
    )
    completed_at: Optional[dt.datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    due_date: Optional[dt.datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    date: Optional[dt.date] = Field(
        default=None,
        sa_column=Column(Date, nullable=True),
        description="Day the user scheduled the task on",
    )

    __table_args__ = (
        UniqueConstraint(
            "integration_source", "external_id", "host", "workspace_id",
            name="uq_task_integration_external",
        ),
        Index("idx_task_reconcile", "workspace_id", "integration_source", "creator", "status"),
    )
