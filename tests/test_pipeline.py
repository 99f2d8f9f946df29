"""Sync runs: per-scope containment and state reporting."""
from datetime import date, datetime, timedelta, timezone

import pytest

from adapters.errors import SourceErrorKind, SourceUnavailable, unauthorized
from adapters.records import (
    EmployeeRecord,
    LifecycleEventRecord,
    ReportRecord,
    TaskRecord,
    TimeOffEntryRecord,
    TimeOffRequestRecord,
)
from database.models import Employee, EngagementMetric, Message, Task
from factories import TODAY, channel, message, ts_on, user
from fakes import FakeHiBob, FakeSlack
from sync.pipeline import SyncPipeline, SyncState

DAY = date(2024, 1, 8)


def _pipeline(db, engine, **kwargs):
    kwargs.setdefault("timeout", 5)
    return SyncPipeline(db, engine=engine, today_fn=lambda: TODAY, **kwargs)


def _metric_channels(db):
    with db.get_session() as session:
        return sorted({row.channel_id for row in session.query(EngagementMetric)})


@pytest.fixture
def workspace():
    return dict(
        channels=[channel("A"), channel("B"), channel("C"), channel("D", is_member=False)],
        users=[user("U1"), user("U2"), user("BOT", is_bot=True)],
        messages=[
            message(ts_on(DAY, 1), channel_id="A", user_id="U1", reactions=1),
            message(ts_on(DAY, 2), channel_id="B", user_id="U2"),
            message(ts_on(DAY, 3), channel_id="C", user_id="U2"),
            message(ts_on(DAY, 4), channel_id="C", user_id="BOT"),
            message(ts_on(DAY, 5), channel_id="D", user_id="U1"),
        ],
    )


class TestSlackSync:

    @pytest.mark.asyncio
    async def test_sync_all_channels(self, db, engine, workspace):
        report = await _pipeline(db, engine, slack=FakeSlack(**workspace)).sync_all_channels()

        assert report.state == SyncState.DONE
        assert report.errors == []
        assert [r.scope for r in report.scopes] == [
            "slack:users", "slack:channels", "channel:A", "channel:B", "channel:C"
        ]
        assert _metric_channels(db) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_stop_the_others(self, db, engine, workspace):
        slack = FakeSlack(**workspace, failures={
            "B": unauthorized("Bot is not a member of channel B", "slack"),
        })

        report = await _pipeline(db, engine, slack=slack).sync_all_channels()

        assert report.state == SyncState.PARTIALLY_FAILED
        [error] = report.errors
        assert error.scope == "channel:B"
        assert error.kind == SourceErrorKind.UNAUTHORIZED
        assert error.phase == SyncState.FETCHING
        assert "not a member" in error.message
        assert _metric_channels(db) == ["A", "C"]
        assert set(report.succeeded) == {"slack:users", "slack:channels", "channel:A", "channel:C"}
        assert db.get_sync_status("channel:B").state == "failed:fetching"
        assert db.get_sync_status("channel:A").state == "done"

    @pytest.mark.asyncio
    async def test_timeout_fails_only_that_channel(self, db, engine, workspace):
        slack = FakeSlack(**workspace, delays={"C": 1})

        report = await _pipeline(db, engine, slack=slack, timeout=0.05).sync_all_channels()

        [error] = report.errors
        assert (error.scope, error.kind) == ("channel:C", SourceErrorKind.TIMEOUT)
        assert _metric_channels(db) == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, db, engine, workspace):
        slack = FakeSlack(**workspace, failures={"A": RuntimeError("boom")})

        report = await _pipeline(db, engine, slack=slack).sync_all_channels()

        [error] = report.errors
        assert (error.scope, error.kind) == ("channel:A", SourceErrorKind.UNKNOWN)
        assert _metric_channels(db) == ["B", "C"]

    @pytest.mark.asyncio
    async def test_channel_listing_failure_ends_run(self, db, engine, workspace):
        slack = FakeSlack(**workspace, failures={"channels": SourceUnavailable("Slack is down", "slack")})

        report = await _pipeline(db, engine, slack=slack).sync_all_channels()

        assert report.state == SyncState.PARTIALLY_FAILED
        assert [e.scope for e in report.errors] == ["slack:channels"]
        assert _metric_channels(db) == []

    @pytest.mark.asyncio
    async def test_sync_channel_data_excludes_bots_from_rollups(self, db, engine, workspace):
        report = await _pipeline(db, engine, slack=FakeSlack(**workspace)).sync_channel_data("C")

        assert report.state == SyncState.DONE
        [scope] = report.scopes
        assert scope.scope == "channel:C"
        # channel + 3 users + 2 messages
        assert scope.saved == 6
        with db.get_session() as session:
            assert session.query(Message).count() == 2
            assert session.query(EngagementMetric).one().message_count == 1

    @pytest.mark.asyncio
    async def test_history_is_fetched_from_window_start(self, db, engine, workspace):
        slack = FakeSlack(**workspace)

        await _pipeline(db, engine, slack=slack).sync_channel_data("A")

        [(channel_id, oldest)] = slack.history_calls
        expected_start = TODAY - timedelta(days=engine.window_days - 1)
        assert channel_id == "A"
        assert datetime.fromtimestamp(oldest, tz=timezone.utc).date() == expected_start

    @pytest.mark.asyncio
    async def test_report_summary(self, db, engine, workspace):
        slack = FakeSlack(**workspace, failures={"B": unauthorized("no access", "slack")})

        report = await _pipeline(db, engine, slack=slack).sync_all_channels()
        summary = report.summary()

        assert summary["state"] == "partially_failed"
        assert summary["scopes"] == 5
        assert summary["succeeded"] == 4
        assert summary["errors"] == [
            {"scope": "channel:B", "kind": "unauthorized", "phase": "fetching", "message": "no access"}
        ]


@pytest.fixture
def hr_source():
    return dict(
        employees=[EmployeeRecord(id="E1", display_name="Ann", department="R&D")],
        lifecycle=[LifecycleEventRecord(employee_id="E1", status="Employed", effective_date=date(2023, 5, 1))],
        tasks=[TaskRecord(id="T1", employee_id="E1", last_updated=datetime(2024, 1, 9))],
        requests=[TimeOffRequestRecord(request_id="R1", employee_id="E1", created_at=datetime(2024, 1, 5))],
        entries=[TimeOffEntryRecord(employee_id="E1", date=TODAY, request_id="R1")],
        reports=[ReportRecord(report_name="Engagement Survey", generated_at=datetime(2024, 1, 9))],
    )


class TestHRSync:

    @pytest.mark.asyncio
    async def test_sync_all_hr(self, db, engine, hr_source):
        hibob = FakeHiBob(**hr_source)

        report = await _pipeline(db, engine, hibob=hibob).sync_all_hr()

        assert report.state == SyncState.DONE
        assert sorted(r.scope for r in report.scopes) == ["hr:employees", "hr:reports", "hr:tasks", "hr:time_off"]
        assert sum(r.saved for r in report.scopes) == 6
        assert ("get_time_off_requests", datetime(2023, 12, 11)) in hibob.calls
        assert ("get_whos_out", TODAY, TODAY + timedelta(days=30)) in hibob.calls

    @pytest.mark.asyncio
    async def test_failing_scope_is_isolated(self, db, engine, hr_source):
        hibob = FakeHiBob(**hr_source, failures={
            "get_open_tasks": unauthorized("service user lacks task permissions", "hibob"),
        })

        report = await _pipeline(db, engine, hibob=hibob).sync_all_hr()

        assert report.state == SyncState.PARTIALLY_FAILED
        assert [e.scope for e in report.errors] == ["hr:tasks"]
        with db.get_session() as session:
            assert session.query(Employee).count() == 1
            assert session.query(Task).count() == 0

    @pytest.mark.asyncio
    async def test_incremental_sync_skips_employees_and_reports(self, db, engine, hr_source):
        hibob = FakeHiBob(**hr_source)

        report = await _pipeline(db, engine, hibob=hibob).sync_hr_incremental()

        assert sorted(r.scope for r in report.scopes) == ["hr:tasks", "hr:time_off"]
        assert not any(call[0] in ("get_employees", "get_engagement_reports") for call in hibob.calls)
