"""Payload normalization and upstream error mapping."""
from datetime import date

import pytest
import requests
from slack_sdk.errors import SlackApiError

from adapters.errors import RateLimited, SourceErrorKind, SourceUnavailable
from adapters.hibob import (
    HiBobAdapter,
    HiBobClient,
    normalize_employee,
    normalize_task,
    normalize_time_off_request,
    normalize_whos_out,
    parse_report_csv,
    summarize_engagement_report,
)
from adapters.records import Portion, TaskStatus
from adapters.slack import SlackAdapter, normalize_message, normalize_user
from utils.rate_limiter import RateLimiter


class FakeSlackResponse(dict):
    """Just enough of ``SlackResponse`` for error classification."""

    def __init__(self, data, status_code=200, headers=None):
        super().__init__(data)
        self.status_code = status_code
        self.headers = headers or {}


def slack_error(code, status_code=200, **extra):
    return SlackApiError(code, FakeSlackResponse({"ok": False, "error": code, **extra}, status_code))


class FakeWebClient:

    def __init__(self, pages=None, error=None):
        self.pages = list(pages or [])
        self.error = error
        self.calls = []

    async def conversations_history(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return self.pages.pop(0)


class TestSlackNormalization:

    def test_slackbot_counts_as_bot(self):
        assert normalize_user({"id": "USLACKBOT", "name": "slackbot"}).is_bot
        assert not normalize_user({"id": "U1", "name": "ann"}).is_bot

    def test_message_reactions_and_null_text(self):
        record = normalize_message(
            {"ts": "1704412800.000100", "user": "U1", "text": None,
             "reactions": [{"name": "tada", "count": 2, "users": ["U2", "U3"]}, {"name": "eyes", "users": ["U4"]}]},
            "C1",
        )

        assert record.text == ""
        assert record.reaction_count == 3
        assert record.timestamp == pytest.approx(1704412800.0001)


class TestSlackAdapter:

    @pytest.mark.asyncio
    async def test_history_follows_cursors_and_skips_malformed(self):
        client = FakeWebClient(pages=[
            {"messages": [{"ts": "1704412800.000100", "user": "U1", "text": "hi"}, {"text": "no ts"}],
             "response_metadata": {"next_cursor": "abc"}},
            {"messages": [{"ts": "1704412900.000100", "user": "U2", "text": "yo"}],
             "response_metadata": {"next_cursor": ""}},
        ])
        adapter = SlackAdapter(client=client, rate_limiter=RateLimiter())

        messages = await adapter.get_channel_messages("C1", oldest=1704412800.0)

        assert [m.user_id for m in messages] == ["U1", "U2"]
        assert client.calls[0]["oldest"] == "1704412800.000000"
        assert client.calls[1]["cursor"] == "abc"

    @pytest.mark.asyncio
    async def test_not_in_channel_is_actionable(self):
        adapter = SlackAdapter(client=FakeWebClient(error=slack_error("not_in_channel")), rate_limiter=RateLimiter())

        with pytest.raises(SourceUnavailable) as excinfo:
            await adapter.get_channel_messages("C42")

        error = excinfo.value
        assert error.kind == SourceErrorKind.UNAUTHORIZED
        assert error.scope == "channel:C42"
        assert "/invite @" in str(error)
        assert "C42" in str(error)

    def test_classification(self):
        adapter = SlackAdapter(client=FakeWebClient(), rate_limiter=RateLimiter())

        missing = adapter._classify(slack_error("missing_scope", needed="channels:history"), "conversations.history", None)
        assert missing.kind == SourceErrorKind.UNAUTHORIZED
        assert "channels:history" in str(missing)

        limited = SlackApiError("ratelimited", FakeSlackResponse(
            {"ok": False, "error": "ratelimited"}, 429, {"Retry-After": "30"}
        ))
        rate_limited = adapter._classify(limited, "users.list", "slack:users")
        assert isinstance(rate_limited, RateLimited)
        assert rate_limited.retry_after == 30

        assert adapter._classify(slack_error("invalid_auth"), "users.list", None).kind == SourceErrorKind.UNAUTHORIZED
        assert adapter._classify(ConnectionError("refused"), "users.list", None).kind == SourceErrorKind.UNREACHABLE
        assert adapter._classify(slack_error("fatal_error"), "users.list", None).kind == SourceErrorKind.UNKNOWN


class TestHiBobNormalization:

    def test_employee_nested_fields(self):
        record = normalize_employee({
            "id": 42,
            "about": {"displayName": "Ann Lee", "email": "ann@example.com"},
            "work": {"department": "R&D", "site": "Berlin", "title": "Engineer",
                     "startDate": "2023-03-01T00:00:00", "reportsTo": {"id": "7"}},
        })

        assert record.id == "42"
        assert record.display_name == "Ann Lee"
        assert (record.department, record.site, record.job_title) == ("R&D", "Berlin", "Engineer")
        assert record.start_date == date(2023, 3, 1)
        assert record.manager_id == "7"
        assert record.employment_status == "Employed"

    def test_task_status_is_normalized(self):
        task = normalize_task({"id": 5, "status": "Completed", "lastUpdated": "2024-01-09T10:00:00Z"})

        assert task.status == TaskStatus.COMPLETED
        assert task.last_updated.tzinfo is None

    def test_time_off_request_fields(self):
        request = normalize_time_off_request({
            "requestId": 9, "employeeId": 3, "policyTypeDisplayName": "Holiday",
            "status": "APPROVED", "createdAt": "2024-01-02T08:00:00",
            "startDate": "2024-01-15", "endDate": "2024-01-16",
        })

        assert (request.request_id, request.employee_id) == ("9", "3")
        assert request.policy_type == "Holiday"
        assert request.status == "approved"

    def test_whos_out_range_expands_per_day(self):
        entries = normalize_whos_out({
            "employeeId": "E1", "requestId": 11, "policyTypeDisplayName": "Holiday",
            "startDate": "2024-01-10", "startPortion": "afternoon",
            "endDate": "2024-01-12", "endPortion": "morning",
        })

        assert [(e.date, e.portion) for e in entries] == [
            (date(2024, 1, 10), Portion.PM),
            (date(2024, 1, 11), Portion.FULL),
            (date(2024, 1, 12), Portion.AM),
        ]
        assert {e.request_id for e in entries} == {"11"}

    def test_whos_out_single_day(self):
        [entry] = normalize_whos_out({"employeeId": "E1", "date": "2024-01-10", "portion": "all_day"})

        assert (entry.date, entry.portion, entry.request_id) == (date(2024, 1, 10), Portion.FULL, None)

    def test_engagement_report_summary(self):
        rows = parse_report_csv(
            "\ufeffEmployee,Department,Engagement Score\n"
            "a,R&D,4\n"
            "b,R&D,5\n"
            "c,Sales,3\n"
            "d,Sales,\n"
        )

        summary = summarize_engagement_report(rows)

        assert summary["averageEngagementScore"] == pytest.approx(4.0)
        assert summary["responseRate"] == 75
        assert summary["byDepartment"] == {"R&D": 4.5, "Sales": 3.0}

    def test_engagement_report_without_rows(self):
        assert summarize_engagement_report([]) == {}


def _response(status_code, body="", headers=None):
    response = requests.Response()
    response.status_code = status_code
    response._content = body.encode()
    response.headers.update(headers or {})
    return response


class TestHiBobClient:

    @pytest.mark.parametrize("status_code, kind", [
        (401, SourceErrorKind.UNAUTHORIZED),
        (403, SourceErrorKind.UNAUTHORIZED),
        (500, SourceErrorKind.UNKNOWN),
    ])
    def test_status_mapping(self, status_code, kind):
        client = HiBobClient("svc", "key", base_url="https://hibob.test")

        with pytest.raises(Exception) as excinfo:
            client._check(_response(status_code, "nope"), "/v1/tasks/open")

        assert excinfo.value.kind == kind

    def test_forbidden_names_endpoint(self):
        client = HiBobClient("svc", "key", base_url="https://hibob.test")

        with pytest.raises(SourceUnavailable, match="/v1/tasks/open"):
            client._check(_response(403), "/v1/tasks/open")

    def test_rate_limited(self):
        client = HiBobClient("svc", "key", base_url="https://hibob.test")

        with pytest.raises(RateLimited) as excinfo:
            client._check(_response(429, headers={"Retry-After": "5"}), "/v1/people/search")

        assert excinfo.value.retry_after == 5


class FakeHiBobClient:

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    def request(self, method, endpoint, **kwargs):
        self.requests.append((method, endpoint, kwargs))
        return self.responses[endpoint]


class TestHiBobAdapter:

    @pytest.mark.asyncio
    async def test_whos_out(self):
        client = FakeHiBobClient({"/v1/timeoff/whosout": {"outs": [
            {"employeeId": "E1", "startDate": "2024-01-10", "endDate": "2024-01-11"},
            {"startDate": "2024-01-10"},
        ]}})
        adapter = HiBobAdapter(client=client, rate_limiter=RateLimiter())

        entries = await adapter.get_whos_out(date(2024, 1, 10), date(2024, 2, 9))

        assert [e.date for e in entries] == [date(2024, 1, 10), date(2024, 1, 11)]
        assert client.requests[0][2]["params"] == {"from": "2024-01-10", "to": "2024-02-09"}

    @pytest.mark.asyncio
    async def test_employee_search_fetches_details_for_bare_ids(self):
        client = FakeHiBobClient({
            "/v1/people/search": {"employees": [{"id": "1"}, {"id": "2", "displayName": "Bo"}]},
            "/v1/people/fields-by-employee-id": {"employee": {"id": "1", "firstName": "Al", "lastName": "Ng"}},
        })
        adapter = HiBobAdapter(client=client, rate_limiter=RateLimiter())

        employees = await adapter.get_employees()

        assert [(e.id, e.display_name) for e in employees] == [("1", "Al Ng"), ("2", "Bo")]
