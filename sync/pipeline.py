"""Sync pipeline: fetch from the adapters, upsert, then recompute rollups.

Each scope (one channel, or one HR data set) runs fetch -> upsert -> aggregate
in order. Scopes of a multi-scope run execute concurrently; a scope that fails
is recorded in the run's ``SyncReport`` and never stops its siblings.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from adapters.errors import SourceError, SourceErrorKind, timed_out
from config import Config
from database.db_manager import DatabaseManager
from engagement.aggregation import AggregationEngine, utc_today
from engagement.dates import epoch_bounds
from utils.logger import get_logger

logger = get_logger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    UPSERTING = "upserting"
    AGGREGATING = "aggregating"
    DONE = "done"
    PARTIALLY_FAILED = "partially_failed"


@dataclass
class ScopeError:
    scope: str
    kind: SourceErrorKind
    message: str
    phase: SyncState


@dataclass
class ScopeResult:
    """Outcome of one scope. ``state`` is the last phase reached."""

    scope: str
    state: SyncState = SyncState.IDLE
    saved: int = 0
    failed: int = 0
    error: Optional[ScopeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    state: SyncState = SyncState.IDLE
    scopes: List[ScopeResult] = field(default_factory=list)
    errors: List[ScopeError] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    def add(self, result: ScopeResult):
        self.scopes.append(result)
        if result.error is not None:
            self.errors.append(result.error)

    def finish(self) -> "SyncReport":
        self.state = SyncState.PARTIALLY_FAILED if self.errors else SyncState.DONE
        self.finished_at = datetime.utcnow()
        return self

    @property
    def succeeded(self) -> List[str]:
        return [result.scope for result in self.scopes if result.ok]

    def summary(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "scopes": len(self.scopes),
            "succeeded": len(self.succeeded),
            "records_saved": sum(result.saved for result in self.scopes),
            "records_failed": sum(result.failed for result in self.scopes),
            "errors": [
                {"scope": e.scope, "kind": e.kind.value, "phase": e.phase.value, "message": e.message}
                for e in self.errors
            ],
        }


ScopeWork = Callable[[ScopeResult], Awaitable[None]]


class SyncPipeline:
    """Drives Slack and HiBob syncs into the store."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        slack: Optional[Any] = None,
        hibob: Optional[Any] = None,
        engine: Optional[AggregationEngine] = None,
        timeout: float = Config.SYNC_TIMEOUT_SECONDS,
        concurrency: int = Config.SYNC_CONCURRENCY,
        today_fn: Optional[Callable[[], date]] = None,
    ):
        self.db = db_manager or DatabaseManager()
        self.today_fn = today_fn or utc_today
        self.engine = engine or AggregationEngine(self.db, today_fn=self.today_fn)
        self.timeout = timeout
        self.concurrency = concurrency
        self._slack = slack
        self._hibob = hibob

    @property
    def slack(self):
        if self._slack is None:
            from adapters.slack import SlackAdapter
            self._slack = SlackAdapter()
        return self._slack

    @property
    def hibob(self):
        if self._hibob is None:
            from adapters.hibob import HiBobAdapter
            self._hibob = HiBobAdapter()
        return self._hibob

    # ------------------------------------------------------------------
    # Scope machinery
    # ------------------------------------------------------------------

    async def _fetch(self, source: str, scope: str, call: Awaitable[Any]) -> Any:
        """Await an adapter call; a timeout fails only this scope."""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise timed_out(source, scope, self.timeout)

    def _upsert(self, result: ScopeResult, records: Sequence[Any], saver: Callable, label: str):
        batch = self.db.save_batch(records, saver, label)
        result.saved += batch.saved
        result.failed += batch.failed

    async def _run_scope(self, scope: str, work: ScopeWork) -> ScopeResult:
        result = ScopeResult(scope)
        try:
            await work(result)
            result.state = SyncState.DONE
            logger.info(f"Synced {scope}: {result.saved} records saved, {result.failed} failed")
        except SourceError as e:
            e.for_scope(scope)
            result.error = ScopeError(scope, e.kind, str(e), result.state)
            logger.error(f"Sync of {scope} failed while {result.state.value}: {e}")
        except Exception as e:
            result.error = ScopeError(scope, SourceErrorKind.UNKNOWN, str(e), result.state)
            logger.exception(f"Unexpected error syncing {scope} while {result.state.value}")

        self._record_status(result)
        return result

    def _record_status(self, result: ScopeResult):
        try:
            self.db.update_sync_status(
                result.scope,
                SyncState.DONE.value if result.ok else f"failed:{result.state.value}",
                record_count=result.saved,
                error_count=result.failed + (0 if result.ok else 1),
                last_error=result.error.message if result.error else None,
            )
        except SQLAlchemyError as e:
            logger.error(f"Could not record sync status for {result.scope}: {e}")

    async def _run_scopes(self, jobs: List[Tuple[str, ScopeWork]], report: SyncReport) -> SyncReport:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run(scope: str, work: ScopeWork) -> ScopeResult:
            async with semaphore:
                return await self._run_scope(scope, work)

        for result in await asyncio.gather(*(run(scope, work) for scope, work in jobs)):
            report.add(result)
        return report.finish()

    # ------------------------------------------------------------------
    # Slack
    # ------------------------------------------------------------------

    def _window_oldest(self) -> float:
        today = self.today_fn()
        start = today - timedelta(days=self.engine.window_days - 1)
        return epoch_bounds(start, today)[0]

    async def _sync_users(self, result: ScopeResult):
        result.state = SyncState.FETCHING
        users = await self._fetch("slack", result.scope, self.slack.get_users())
        result.state = SyncState.UPSERTING
        self._upsert(result, users, self.db.save_user, "users")

    async def _sync_channel(self, channel_id: str, result: ScopeResult, include_users: bool):
        scope = result.scope

        result.state = SyncState.FETCHING
        channel = await self._fetch("slack", scope, self.slack.get_channel_info(channel_id))
        users = await self._fetch("slack", scope, self.slack.get_users()) if include_users else []
        messages = await self._fetch(
            "slack", scope, self.slack.get_channel_messages(channel_id, oldest=self._window_oldest())
        )

        result.state = SyncState.UPSERTING
        self._upsert(result, [channel], self.db.save_channel, "channels")
        self._upsert(result, users, self.db.save_user, "users")
        self._upsert(result, messages, self.db.save_message, "messages")

        result.state = SyncState.AGGREGATING
        self.engine.recompute_channel(channel_id)

    async def sync_channel_data(self, channel_id: str) -> SyncReport:
        """Sync one channel (with the workspace users) and rebuild its rollups."""
        logger.info(f"Starting sync for channel {channel_id}")
        report = SyncReport()
        report.add(await self._run_scope(
            f"channel:{channel_id}",
            lambda result: self._sync_channel(channel_id, result, include_users=True),
        ))
        return report.finish()

    async def sync_all_channels(self) -> SyncReport:
        """Sync every channel the bot is a member of."""
        report = SyncReport()

        users = await self._run_scope("slack:users", self._sync_users)
        report.add(users)

        channels: List[Any] = []

        async def list_channels(result: ScopeResult):
            result.state = SyncState.FETCHING
            channels.extend(await self._fetch("slack", result.scope, self.slack.get_channels()))
            result.state = SyncState.UPSERTING
            self._upsert(result, channels, self.db.save_channel, "channels")

        listing = await self._run_scope("slack:channels", list_channels)
        report.add(listing)
        if not listing.ok:
            return report.finish()

        member_channels = [channel for channel in channels if channel.is_member]
        logger.info(f"Starting sync for {len(member_channels)} channels")

        jobs = [
            (
                f"channel:{channel.id}",
                lambda result, channel_id=channel.id: self._sync_channel(channel_id, result, include_users=False),
            )
            for channel in member_channels
        ]
        report = await self._run_scopes(jobs, report)
        logger.info(
            f"Channel sync finished: {len(report.succeeded)}/{len(report.scopes)} scopes ok, "
            f"{len(report.errors)} errors"
        )
        return report

    # ------------------------------------------------------------------
    # HiBob
    # ------------------------------------------------------------------

    async def _sync_employees(self, result: ScopeResult):
        scope = result.scope
        result.state = SyncState.FETCHING
        employees = await self._fetch("hibob", scope, self.hibob.get_employees())
        lifecycle = await self._fetch("hibob", scope, self.hibob.get_lifecycle_history())
        work_history = await self._fetch("hibob", scope, self.hibob.get_work_history())

        result.state = SyncState.UPSERTING
        self._upsert(result, employees, self.db.save_employee, "employees")
        self._upsert(result, lifecycle, self.db.save_lifecycle_event, "lifecycle events")
        self._upsert(result, work_history, self.db.save_work_history, "work history")

    async def _sync_tasks(self, result: ScopeResult):
        result.state = SyncState.FETCHING
        tasks = await self._fetch("hibob", result.scope, self.hibob.get_open_tasks())
        result.state = SyncState.UPSERTING
        self._upsert(result, tasks, self.db.save_task, "tasks")

    async def _sync_time_off(self, result: ScopeResult):
        scope = result.scope
        today = self.today_fn()
        since = datetime.combine(today - timedelta(days=Config.HR_TIME_OFF_LOOKBACK_DAYS), datetime.min.time())

        result.state = SyncState.FETCHING
        requests = await self._fetch("hibob", scope, self.hibob.get_time_off_requests(since=since))
        entries = await self._fetch(
            "hibob", scope,
            self.hibob.get_whos_out(today, today + timedelta(days=Config.HR_TIME_OFF_LOOKAHEAD_DAYS)),
        )

        result.state = SyncState.UPSERTING
        self._upsert(result, requests, self.db.save_time_off_request, "time-off requests")
        self._upsert(result, entries, self.db.save_time_off_entry, "time-off entries")

    async def _sync_reports(self, result: ScopeResult):
        result.state = SyncState.FETCHING
        reports = await self._fetch("hibob", result.scope, self.hibob.get_engagement_reports())
        result.state = SyncState.UPSERTING
        self._upsert(result, reports, self.db.save_report_data, "reports")

    async def sync_all_hr(self) -> SyncReport:
        """Employees, tasks, time off and reports."""
        logger.info("Starting HiBob data synchronization")
        report = await self._run_scopes([
            ("hr:employees", self._sync_employees),
            ("hr:tasks", self._sync_tasks),
            ("hr:time_off", self._sync_time_off),
            ("hr:reports", self._sync_reports),
        ], SyncReport())
        logger.info(f"HiBob sync finished: {report.state.value}")
        return report

    async def sync_hr_incremental(self) -> SyncReport:
        """Tasks and time off only."""
        return await self._run_scopes([
            ("hr:tasks", self._sync_tasks),
            ("hr:time_off", self._sync_time_off),
        ], SyncReport())
