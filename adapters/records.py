"""Typed records handed from the adapters to the upsert layer.

Every upstream payload is normalized into one of these models before it reaches
``DatabaseManager``. Field names follow the store columns, not the upstream APIs.
"""
import datetime as dt
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator

from utils.logger import get_logger

logger = get_logger(__name__)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Store datetimes as naive UTC."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]


def resolve_display_name(
    display_name: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    employee_id: str,
) -> str:
    """Pick a non-empty display name for an employee.

    Order: explicit display name, "first last", whichever single name part exists,
    then ``Employee <last 4 chars of id>``.
    """
    if display_name and display_name.strip():
        return display_name.strip()

    first = (first_name or "").strip()
    last = (last_name or "").strip()
    if first and last:
        resolved = f"{first} {last}"
    elif first or last:
        resolved = first or last
    else:
        resolved = f"Employee {employee_id[-4:]}"

    logger.warning(f"Employee {employee_id} has no display name, using '{resolved}'")
    return resolved


# ============================================================================
# Slack
# ============================================================================

class ChannelRecord(BaseModel):
    id: str
    name: str
    is_member: bool = False
    num_members: Optional[int] = None
    topic: Optional[str] = None
    purpose: Optional[str] = None


class UserRecord(BaseModel):
    id: str
    name: str
    real_name: Optional[str] = None
    display_name: Optional[str] = None
    is_bot: bool = False
    deleted: bool = False


class ReactionRecord(BaseModel):
    name: str
    count: int = 1
    users: List[str] = Field(default_factory=list)


class MessageRecord(BaseModel):
    ts: str
    channel_id: str
    user_id: Optional[str] = None
    text: str = ""
    thread_ts: Optional[str] = None
    reply_count: int = 0
    reactions: List[ReactionRecord] = Field(default_factory=list)

    @field_validator("ts")
    @classmethod
    def _ts_is_numeric(cls, value: str) -> str:
        float(value)
        return value

    @field_validator("text", mode="before")
    @classmethod
    def _text_not_null(cls, value: Any) -> str:
        return value or ""

    @property
    def timestamp(self) -> float:
        return float(self.ts)

    @property
    def reaction_count(self) -> int:
        return sum(reaction.count for reaction in self.reactions)


# ============================================================================
# HiBob
# ============================================================================

class EmployeeRecord(BaseModel):
    id: str
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    manager_id: Optional[str] = None
    department: Optional[str] = None
    site: Optional[str] = None
    job_title: Optional[str] = None
    start_date: Optional[date] = None
    status: Optional[str] = None
    avatar_url: Optional[str] = None
    employment_status: str = "Employed"

    @model_validator(mode="after")
    def _fill_display_name(self) -> "EmployeeRecord":
        self.display_name = resolve_display_name(
            self.display_name, self.first_name, self.last_name, self.id
        )
        return self


class LifecycleEventRecord(BaseModel):
    employee_id: str
    effective_date: date
    status: str
    reason: Optional[str] = None
    type: Optional[str] = None


class WorkHistoryRecord(BaseModel):
    employee_id: str
    effective_date: date
    department: Optional[str] = None
    site: Optional[str] = None
    manager: Optional[str] = None
    job_title: Optional[str] = None


class TaskStatus(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskRecord(BaseModel):
    id: str
    employee_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    list_name: Optional[str] = None
    status: TaskStatus = TaskStatus.OPEN
    due_date: Optional[date] = None
    created_date: Optional[date] = None
    last_updated: UtcDatetime
    priority: Optional[str] = None
    assignee: Optional[str] = None
    completed_date: Optional[date] = None


class TimeOffRequestRecord(BaseModel):
    request_id: str
    employee_id: str
    policy_type: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    dates: List[date] = Field(default_factory=list)
    duration: Optional[float] = None
    duration_unit: Optional[str] = None
    status: str = "pending"
    reason: Optional[str] = None
    created_at: UtcDatetime
    updated_at: Optional[UtcDatetime] = None
    approved_at: Optional[UtcDatetime] = None


class Portion(str, Enum):
    FULL = "full"
    AM = "am"
    PM = "pm"


class TimeOffEntryRecord(BaseModel):
    employee_id: str
    date: dt.date
    portion: Portion = Portion.FULL
    policy_type: Optional[str] = None
    request_id: Optional[str] = None
    approval_status: Optional[str] = None


class ReportRecord(BaseModel):
    report_name: str
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    generated_at: UtcDatetime


# ============================================================================
# Webinars
# ============================================================================

class AttendeeRecord(BaseModel):
    participant_name: str
    attended_duration: str
    attendance_started_at: Optional[str] = None
    joined_at: Optional[str] = None
    attendance_stopped_at: Optional[str] = None
    meeting_code: Optional[str] = None
