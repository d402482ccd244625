# Import all models for easy access
from .base import BaseModel
from .calendar import Calendar, Event
from .enums import IntegrationProvider, IntegrationStatus, TaskStatus
from .integration import Integration
from .task import Task

__all__ = [
    "BaseModel",
    "Calendar",
    "Event",
    "Integration",
    "IntegrationProvider",
    "IntegrationStatus",
    "Task",
    "TaskStatus",
]
