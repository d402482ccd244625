"""
Enums and constants for the application.
"""
from enum import Enum


class IntegrationProvider(str, Enum):
    """
    Providers with a sync adapter.

    Each provider has a module in app/integrations/providers/{provider}.py
    registered in app.integrations.service.PROVIDER_REGISTRY.
    """
    ASANA = "asana"
    AWORK = "awork"
    CALENDLY = "calendly"
    CLICKUP = "clickup"
    GITHUB = "github"
    GOOGLE_CALENDAR = "google_calendar"
    GOOGLE_TASKS = "google_tasks"
    JIRA = "jira"
    MICROSOFT_CALENDAR = "microsoft_calendar"
    MICROSOFT_TODO = "microsoft_todo"
    NIFTY = "nifty"
    TICKTICK = "ticktick"
    TODOIST = "todoist"
    TRELLO = "trello"
    ZOHO_PROJECTS = "zoho_projects"


class IntegrationStatus(str, Enum):
    """Health of an integration as seen by the last pass."""
    ACTIVE = "active"
    ERROR = "error"


class TaskStatus(str, Enum):
    """Local task lifecycle."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# Statuses reconciliation may move to COMPLETED
NON_TERMINAL_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)
