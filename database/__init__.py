"""Database package."""
from .db_manager import BatchResult, DatabaseManager
from .errors import QueryFailure, RecordWriteFailure
from .models import (
    Base,
    Channel,
    User,
    Message,
    Reaction,
    EngagementMetric,
    UserActivity,
    Employee,
    LifecycleEvent,
    WorkHistory,
    Task,
    TimeOffRequest,
    TimeOffEntry,
    ReportData,
    WebhookEvent,
    WebinarHost,
    Webinar,
    WebinarAttendee,
    SyncStatus,
)

__all__ = [
    "BatchResult",
    "DatabaseManager",
    "QueryFailure",
    "RecordWriteFailure",
    "Base",
    "Channel",
    "User",
    "Message",
    "Reaction",
    "EngagementMetric",
    "UserActivity",
    "Employee",
    "LifecycleEvent",
    "WorkHistory",
    "Task",
    "TimeOffRequest",
    "TimeOffEntry",
    "ReportData",
    "WebhookEvent",
    "WebinarHost",
    "Webinar",
    "WebinarAttendee",
    "SyncStatus",
]
