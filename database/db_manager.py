"""Database manager: the upsert layer for engagement, HR and webinar data.

Two write policies:

* overwrite ("last sync wins"): channels, users, messages and their reactions,
  employees, tasks, time-off requests, reports and webinar aggregates;
* insert-once ("first sync wins"): lifecycle events, work history, time-off
  entries and webhook events. An existing natural key is left untouched.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, func
from sqlalchemy.orm import sessionmaker, Session
from tqdm import tqdm

from adapters.records import (
    AttendeeRecord,
    ChannelRecord,
    EmployeeRecord,
    LifecycleEventRecord,
    MessageRecord,
    ReportRecord,
    TaskRecord,
    TimeOffEntryRecord,
    TimeOffRequestRecord,
    UserRecord,
    WorkHistoryRecord,
)
from adapters.webinar_csv import summarize_attendance
from config import Config
from utils.logger import get_logger
from .errors import RecordWriteFailure
from .models import (
    Base, Channel, User, Message, Reaction, EngagementMetric, UserActivity,
    Employee, LifecycleEvent, WorkHistory, Task, TimeOffRequest, TimeOffEntry,
    ReportData, WebhookEvent, WebinarHost, Webinar, WebinarAttendee, SyncStatus
)

logger = get_logger(__name__)


@dataclass
class BatchResult:
    """Outcome of ``DatabaseManager.save_batch``."""

    saved: int = 0
    failed: int = 0
    failures: List[RecordWriteFailure] = field(default_factory=list)


def _record_key(record: Any) -> Any:
    for attr in ("id", "ts", "request_id", "report_name", "employee_id"):
        value = getattr(record, attr, None)
        if value is not None:
            return value
    return repr(record)[:60]


class DatabaseManager:
    """Manages database operations."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database manager."""
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = create_engine(
            self.database_url,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600
        )
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.init_db()

    def init_db(self):
        """Initialize database schema."""
        logger.info("Initializing database schema")
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database schema initialized")

    def get_session(self) -> Session:
        """Get database session."""
        return self.SessionLocal()

    # Batch writes
    def save_batch(
        self,
        records: Iterable[Any],
        saver: Callable[[Any], Any],
        label: str,
    ) -> BatchResult:
        """Apply ``saver`` to every record; a failing record is logged and skipped."""
        result = BatchResult()
        records = list(records)

        for record in tqdm(records, desc=f"Saving {label}", disable=not Config.SHOW_PROGRESS):
            try:
                saver(record)
                result.saved += 1
            except Exception as e:
                failure = RecordWriteFailure(label, _record_key(record), e)
                logger.error(str(failure))
                result.failed += 1
                result.failures.append(failure)

        if result.failed:
            logger.warning(f"Saved {result.saved}/{len(records)} {label}, {result.failed} failed")
        else:
            logger.debug(f"Saved {result.saved} {label}")
        return result

    # Channel operations
    def save_channel(self, record: ChannelRecord) -> Channel:
        """Save or update channel."""
        with self.get_session() as session:
            channel = session.query(Channel).filter_by(channel_id=record.id).first()

            if channel:
                channel.name = record.name
                channel.is_member = record.is_member
                channel.num_members = record.num_members
                channel.topic = record.topic
                channel.purpose = record.purpose
                channel.updated_at = datetime.utcnow()
            else:
                channel = Channel(
                    channel_id=record.id,
                    name=record.name,
                    is_member=record.is_member,
                    num_members=record.num_members,
                    topic=record.topic,
                    purpose=record.purpose
                )
                session.add(channel)

            session.commit()
            return channel

    # User operations
    def save_user(self, record: UserRecord) -> User:
        """Save or update user."""
        with self.get_session() as session:
            user = session.query(User).filter_by(user_id=record.id).first()

            if user:
                user.username = record.name
                user.real_name = record.real_name
                user.display_name = record.display_name
                user.is_bot = record.is_bot
                user.deleted = record.deleted
                user.updated_at = datetime.utcnow()
            else:
                user = User(
                    user_id=record.id,
                    username=record.name,
                    real_name=record.real_name,
                    display_name=record.display_name,
                    is_bot=record.is_bot,
                    deleted=record.deleted
                )
                session.add(user)

            session.commit()
            return user

    # Message operations
    def save_message(self, record: MessageRecord) -> Message:
        """Save or update message; its reactions are replaced wholesale."""
        with self.get_session() as session:
            message = session.query(Message).filter_by(ts=record.ts).first()

            if message:
                message.channel_id = record.channel_id
                message.user_id = record.user_id
                message.text = record.text
                message.timestamp = record.timestamp
                message.thread_ts = record.thread_ts
                message.reply_count = record.reply_count
                message.reaction_count = record.reaction_count
                message.updated_at = datetime.utcnow()
            else:
                message = Message(
                    ts=record.ts,
                    channel_id=record.channel_id,
                    user_id=record.user_id,
                    text=record.text,
                    timestamp=record.timestamp,
                    thread_ts=record.thread_ts,
                    reply_count=record.reply_count,
                    reaction_count=record.reaction_count
                )
                session.add(message)

            self._save_reactions(session, record)

            session.commit()
            return message

    def _save_reactions(self, session: Session, record: MessageRecord):
        """Replace the stored reactions of a message."""
        session.query(Reaction).filter_by(message_ts=record.ts).delete(synchronize_session=False)
        for reaction in record.reactions:
            session.add(Reaction(
                message_ts=record.ts,
                name=reaction.name,
                count=reaction.count,
                users=reaction.users
            ))

    # Employee operations
    def save_employee(self, record: EmployeeRecord) -> Employee:
        """Save or update employee."""
        with self.get_session() as session:
            employee = session.query(Employee).filter_by(employee_id=record.id).first()
            fields = {
                "display_name": record.display_name,
                "email": record.email,
                "manager_id": record.manager_id,
                "department": record.department,
                "site": record.site,
                "job_title": record.job_title,
                "start_date": record.start_date,
                "status": record.status,
                "avatar_url": record.avatar_url,
                "employment_status": record.employment_status,
            }

            if employee:
                for key, value in fields.items():
                    setattr(employee, key, value)
                employee.updated_at = datetime.utcnow()
            else:
                employee = Employee(employee_id=record.id, **fields)
                session.add(employee)

            session.commit()
            return employee

    def save_lifecycle_event(self, record: LifecycleEventRecord) -> LifecycleEvent:
        """Insert a lifecycle event unless its natural key already exists."""
        with self.get_session() as session:
            event = session.query(LifecycleEvent).filter_by(
                employee_id=record.employee_id,
                effective_date=record.effective_date,
                status=record.status
            ).first()

            if event:
                return event

            event = LifecycleEvent(**record.model_dump())
            session.add(event)
            session.commit()
            return event

    def save_work_history(self, record: WorkHistoryRecord) -> WorkHistory:
        """Insert a work history entry unless its natural key already exists."""
        with self.get_session() as session:
            entry = session.query(WorkHistory).filter_by(
                employee_id=record.employee_id,
                effective_date=record.effective_date
            ).first()

            if entry:
                return entry

            entry = WorkHistory(**record.model_dump())
            session.add(entry)
            session.commit()
            return entry

    # Task operations
    def save_task(self, record: TaskRecord) -> Task:
        """Save or update task."""
        with self.get_session() as session:
            task = session.query(Task).filter_by(task_id=record.id).first()
            fields = record.model_dump(exclude={"id"})
            fields["status"] = record.status.value

            if task:
                for key, value in fields.items():
                    setattr(task, key, value)
            else:
                task = Task(task_id=record.id, **fields)
                session.add(task)

            session.commit()
            return task

    # Time off operations
    def save_time_off_request(self, record: TimeOffRequestRecord) -> TimeOffRequest:
        """Save or update time-off request."""
        with self.get_session() as session:
            request = session.query(TimeOffRequest).filter_by(
                request_id=record.request_id
            ).first()
            fields = record.model_dump(exclude={"request_id", "dates"})
            fields["dates"] = [day.isoformat() for day in record.dates]

            if request:
                for key, value in fields.items():
                    setattr(request, key, value)
            else:
                request = TimeOffRequest(request_id=record.request_id, **fields)
                session.add(request)

            session.commit()
            return request

    def save_time_off_entry(self, record: TimeOffEntryRecord) -> TimeOffEntry:
        """Insert a who's-out entry unless (employee, date, request) already exists."""
        with self.get_session() as session:
            entry = session.query(TimeOffEntry).filter_by(
                employee_id=record.employee_id,
                date=record.date,
                request_id=record.request_id
            ).first()

            if entry:
                return entry

            entry = TimeOffEntry(
                employee_id=record.employee_id,
                date=record.date,
                portion=record.portion.value,
                policy_type=record.policy_type,
                request_id=record.request_id,
                approval_status=record.approval_status
            )
            session.add(entry)
            session.commit()
            return entry

    # Report operations
    def save_report_data(self, record: ReportRecord) -> ReportData:
        """Save or replace the latest rows of a report."""
        with self.get_session() as session:
            report = session.query(ReportData).filter_by(report_name=record.report_name).first()

            if report:
                report.rows = record.rows
                report.report_metadata = record.metadata
                report.generated_at = record.generated_at
            else:
                report = ReportData(
                    report_name=record.report_name,
                    rows=record.rows,
                    report_metadata=record.metadata,
                    generated_at=record.generated_at
                )
                session.add(report)

            session.commit()
            return report

    # Webhook operations
    def save_webhook_event(
        self,
        event_id: str,
        event_type: str,
        payload: Dict[str, Any],
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> Tuple[WebhookEvent, bool]:
        """Store a webhook event once. Returns the event and whether it was new."""
        with self.get_session() as session:
            event = session.query(WebhookEvent).filter_by(event_id=event_id).first()

            if event:
                return event, False

            event = WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                resource_type=resource_type,
                resource_id=resource_id,
                payload=payload
            )
            session.add(event)
            session.commit()
            return event, True

    def mark_webhook_processed(self, event_id: str):
        """Flag a stored webhook event as handled."""
        with self.get_session() as session:
            event = session.query(WebhookEvent).filter_by(event_id=event_id).first()
            if event:
                event.processed = True
                event.processed_at = datetime.utcnow()
                session.commit()

    # Webinar operations
    def _get_or_create_host(self, session: Session, host_name: str) -> WebinarHost:
        host = session.query(WebinarHost).filter_by(name=host_name).first()
        if not host:
            host = WebinarHost(name=host_name)
            session.add(host)
            session.flush()
        return host

    def save_webinar(
        self,
        name: str,
        host_name: str,
        attendees: List[AttendeeRecord],
        meeting_code: Optional[str] = None,
    ) -> Webinar:
        """Create a webinar with its attendees and compute its aggregates."""
        with self.get_session() as session:
            host = self._get_or_create_host(session, host_name)
            webinar = Webinar(name=name, host_id=host.id, meeting_code=meeting_code)
            session.add(webinar)
            session.flush()

            for attendee in attendees:
                session.add(WebinarAttendee(webinar_id=webinar.id, **attendee.model_dump()))
            session.flush()

            self._refresh_webinar_aggregates(session, webinar)
            session.commit()
            logger.info(f"Saved webinar '{name}' with {webinar.total_attendees} attendees")
            return webinar

    def _refresh_webinar_aggregates(self, session: Session, webinar: Webinar):
        """Recompute attendance aggregates from the stored attendee rows."""
        stored = session.query(WebinarAttendee).filter_by(webinar_id=webinar.id).all()
        summary = summarize_attendance(
            [AttendeeRecord(
                participant_name=row.participant_name,
                attended_duration=row.attended_duration
            ) for row in stored]
        )
        webinar.total_attendees = summary["total_attendees"]
        webinar.unique_attendees = summary["unique_attendees"]
        webinar.average_duration = summary["average_duration"]
        webinar.updated_at = datetime.utcnow()

    def delete_webinar(self, webinar_id: int) -> bool:
        """Delete a webinar and its attendees."""
        with self.get_session() as session:
            webinar = session.query(Webinar).filter_by(id=webinar_id).first()
            if not webinar:
                return False
            session.delete(webinar)
            session.commit()
            logger.info(f"Deleted webinar {webinar_id}")
            return True

    # Sync status operations
    def update_sync_status(
        self,
        scope: str,
        state: str,
        record_count: int = 0,
        error_count: int = 0,
        last_error: Optional[str] = None,
    ):
        """Record the outcome of the latest sync of a scope."""
        with self.get_session() as session:
            sync_status = session.query(SyncStatus).filter_by(scope=scope).first()

            if sync_status:
                sync_status.state = state
                sync_status.last_sync_time = datetime.utcnow()
                sync_status.record_count = record_count
                sync_status.error_count = error_count
                sync_status.last_error = last_error
                sync_status.updated_at = datetime.utcnow()
            else:
                sync_status = SyncStatus(
                    scope=scope,
                    state=state,
                    last_sync_time=datetime.utcnow(),
                    record_count=record_count,
                    error_count=error_count,
                    last_error=last_error
                )
                session.add(sync_status)

            session.commit()

    def get_sync_status(self, scope: str) -> Optional[SyncStatus]:
        """Get sync status for scope."""
        with self.get_session() as session:
            return session.query(SyncStatus).filter_by(scope=scope).first()

    # Query operations
    def get_member_channels(self) -> List[Channel]:
        """Channels the bot belongs to."""
        with self.get_session() as session:
            return session.query(Channel).filter(Channel.is_member.is_(True)).all()

    def get_statistics(self) -> Dict[str, Any]:
        """Get database statistics."""
        with self.get_session() as session:
            return {
                "channels": session.query(func.count(Channel.channel_id)).scalar(),
                "users": session.query(func.count(User.user_id)).scalar(),
                "messages": session.query(func.count(Message.ts)).scalar(),
                "reactions": session.query(func.count(Reaction.id)).scalar(),
                "engagement_metrics": session.query(func.count()).select_from(EngagementMetric).scalar(),
                "user_activity": session.query(func.count()).select_from(UserActivity).scalar(),
                "employees": session.query(func.count(Employee.employee_id)).scalar(),
                "tasks": session.query(func.count(Task.task_id)).scalar(),
                "time_off_requests": session.query(func.count(TimeOffRequest.request_id)).scalar(),
                "time_off_entries": session.query(func.count(TimeOffEntry.id)).scalar(),
                "webinars": session.query(func.count(Webinar.id)).scalar(),
            }
