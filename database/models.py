"""SQLAlchemy models for engagement, HR and webinar data."""
from datetime import datetime
from sqlalchemy import (
    Column, String, Boolean, Integer, Float, Date, DateTime,
    ForeignKey, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# ============================================================================
# Slack Models
# ============================================================================

class Channel(Base):
    """Slack channel."""
    __tablename__ = "channels"

    channel_id = Column(String(20), primary_key=True)
    name = Column(String(255), nullable=False)
    is_member = Column(Boolean, default=False)
    num_members = Column(Integer)
    topic = Column(Text)
    purpose = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    messages = relationship("Message", back_populates="channel")

    __table_args__ = (
        Index("idx_channel_name", "name"),
        Index("idx_channel_member", "is_member"),
    )


class User(Base):
    """Slack user."""
    __tablename__ = "users"

    user_id = Column(String(20), primary_key=True)
    username = Column(String(255), nullable=False)
    real_name = Column(String(255))
    display_name = Column(String(255))
    is_bot = Column(Boolean, default=False)
    deleted = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Message(Base):
    """Slack message, keyed by its ts."""
    __tablename__ = "messages"

    ts = Column(String(32), primary_key=True)
    channel_id = Column(String(20), ForeignKey("channels.channel_id"), nullable=False)
    user_id = Column(String(20))  # NULL for system and integration messages
    text = Column(Text, nullable=False, default="")
    timestamp = Column(Float, nullable=False)
    thread_ts = Column(String(32))  # NULL if not part of a thread
    reply_count = Column(Integer, default=0)
    reaction_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    channel = relationship("Channel", back_populates="messages")
    reactions = relationship("Reaction", back_populates="message", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_message_channel_ts", "channel_id", "timestamp"),
        Index("idx_message_user", "user_id"),
        Index("idx_message_timestamp", "timestamp"),
    )


class Reaction(Base):
    """Emoji reaction on a message, one row per emoji."""
    __tablename__ = "reactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_ts = Column(String(32), ForeignKey("messages.ts"), nullable=False)
    name = Column(String(100), nullable=False)
    count = Column(Integer, default=1)
    users = Column(JSON, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    message = relationship("Message", back_populates="reactions")

    __table_args__ = (
        UniqueConstraint("message_ts", "name", name="uq_reaction"),
        Index("idx_reaction_message", "message_ts"),
    )


class EngagementMetric(Base):
    """Daily engagement rollup for one channel."""
    __tablename__ = "engagement_metrics"

    channel_id = Column(String(20), ForeignKey("channels.channel_id"), primary_key=True)
    date = Column(Date, primary_key=True)
    message_count = Column(Integer, default=0)
    user_count = Column(Integer, default=0)
    reaction_count = Column(Integer, default=0)
    thread_count = Column(Integer, default=0)
    avg_message_length = Column(Float, default=0)
    engagement_score = Column(Float, default=0)

    __table_args__ = (
        Index("idx_engagement_metrics_date", "date"),
    )


class UserActivity(Base):
    """Daily activity rollup for one user in one channel."""
    __tablename__ = "user_activity"

    user_id = Column(String(20), primary_key=True)
    channel_id = Column(String(20), ForeignKey("channels.channel_id"), primary_key=True)
    date = Column(Date, primary_key=True)
    message_count = Column(Integer, default=0)
    reaction_count = Column(Integer, default=0)
    thread_count = Column(Integer, default=0)
    avg_message_length = Column(Float, default=0)

    __table_args__ = (
        Index("idx_user_activity_date", "date"),
        Index("idx_user_activity_channel_date", "channel_id", "date"),
    )


# ============================================================================
# HiBob Models
# ============================================================================

class Employee(Base):
    """HiBob employee."""
    __tablename__ = "hibob_employees"

    employee_id = Column(String(50), primary_key=True)
    display_name = Column(String(255), nullable=False)
    email = Column(String(255))
    manager_id = Column(String(50))
    department = Column(String(255))
    site = Column(String(255))
    job_title = Column(String(255))
    start_date = Column(Date)
    status = Column(String(50))
    avatar_url = Column(String(500))
    employment_status = Column(String(50), default="Employed")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_employee_department", "department"),
        Index("idx_employee_status", "employment_status"),
    )


class LifecycleEvent(Base):
    """Employment lifecycle change (hire, termination, ...)."""
    __tablename__ = "hibob_lifecycle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(String(50), nullable=False)
    effective_date = Column(Date, nullable=False)
    status = Column(String(50), nullable=False)
    reason = Column(String(255))
    type = Column(String(50))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "effective_date", "status", name="uq_lifecycle_event"),
        Index("idx_lifecycle_effective_date", "effective_date"),
    )


class WorkHistory(Base):
    """Point-in-time work assignment of an employee."""
    __tablename__ = "hibob_work_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(String(50), nullable=False)
    effective_date = Column(Date, nullable=False)
    department = Column(String(255))
    site = Column(String(255))
    manager = Column(String(255))
    job_title = Column(String(255))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "effective_date", name="uq_work_history"),
    )


class Task(Base):
    """HiBob onboarding/offboarding task."""
    __tablename__ = "hibob_tasks"

    task_id = Column(String(50), primary_key=True)
    employee_id = Column(String(50))
    title = Column(String(500))
    description = Column(Text)
    list_name = Column(String(255))
    status = Column(String(20), nullable=False, default="open")
    due_date = Column(Date)
    created_date = Column(Date)
    last_updated = Column(DateTime, nullable=False)
    priority = Column(String(20))
    assignee = Column(String(255))
    completed_date = Column(Date)
    synced_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_task_status", "status"),
        Index("idx_task_employee", "employee_id"),
    )


class TimeOffRequest(Base):
    """HiBob time-off request."""
    __tablename__ = "hibob_time_off_requests"

    request_id = Column(String(50), primary_key=True)
    employee_id = Column(String(50), nullable=False)
    policy_type = Column(String(255))
    start_date = Column(Date)
    end_date = Column(Date)
    dates = Column(JSON, default=list)
    duration = Column(Float)
    duration_unit = Column(String(20))
    status = Column(String(20))
    reason = Column(Text)
    created_at = Column(DateTime)  # upstream creation time
    updated_at = Column(DateTime)
    approved_at = Column(DateTime)
    synced_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_time_off_request_created", "created_at"),
    )


class TimeOffEntry(Base):
    """One employee out on one day."""
    __tablename__ = "hibob_time_off_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    employee_id = Column(String(50), nullable=False)
    date = Column(Date, nullable=False)
    portion = Column(String(10), nullable=False, default="full")
    policy_type = Column(String(255))
    request_id = Column(String(50))
    approval_status = Column(String(20))
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("employee_id", "date", "request_id", name="uq_time_off_entry"),
        Index("idx_time_off_entry_date", "date"),
    )


class ReportData(Base):
    """Latest downloaded HiBob report."""
    __tablename__ = "hibob_report_data"

    report_name = Column(String(255), primary_key=True)
    rows = Column(JSON, default=list)
    report_metadata = Column("metadata", JSON, default=dict)
    generated_at = Column(DateTime, default=datetime.utcnow)


class WebhookEvent(Base):
    """Received HiBob webhook, stored once per event id."""
    __tablename__ = "hibob_webhook_events"

    event_id = Column(String(100), primary_key=True)
    event_type = Column(String(100), nullable=False)
    resource_type = Column(String(50))
    resource_id = Column(String(100))
    payload = Column(JSON)
    processed = Column(Boolean, default=False)
    processed_at = Column(DateTime)
    received_at = Column(DateTime, default=datetime.utcnow)


# ============================================================================
# Webinar Models
# ============================================================================

class WebinarHost(Base):
    """Webinar host."""
    __tablename__ = "webinar_hosts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    webinars = relationship("Webinar", back_populates="host")


class Webinar(Base):
    """Webinar with attendance aggregates."""
    __tablename__ = "webinars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(500), nullable=False)
    host_id = Column(Integer, ForeignKey("webinar_hosts.id"))
    meeting_code = Column(String(100))
    total_attendees = Column(Integer, default=0)
    unique_attendees = Column(Integer, default=0)
    average_duration = Column(String(20), default="00:00")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    host = relationship("WebinarHost", back_populates="webinars")
    attendees = relationship("WebinarAttendee", back_populates="webinar", cascade="all, delete-orphan")


class WebinarAttendee(Base):
    """One attendance row from a webinar CSV export."""
    __tablename__ = "webinar_attendees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webinar_id = Column(Integer, ForeignKey("webinars.id"), nullable=False)
    participant_name = Column(String(255), nullable=False)
    attendance_started_at = Column(String(50))
    joined_at = Column(String(50))
    attendance_stopped_at = Column(String(50))
    attended_duration = Column(String(50), nullable=False)
    meeting_code = Column(String(100))
    created_at = Column(DateTime, default=datetime.utcnow)

    webinar = relationship("Webinar", back_populates="attendees")

    __table_args__ = (
        Index("idx_webinar_attendee_webinar", "webinar_id"),
    )


# ============================================================================
# Sync bookkeeping
# ============================================================================

class SyncStatus(Base):
    """Outcome of the latest sync of one scope."""
    __tablename__ = "sync_status"

    scope = Column(String(100), primary_key=True)
    state = Column(String(30))
    last_sync_time = Column(DateTime)
    record_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)
    last_error = Column(Text)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
