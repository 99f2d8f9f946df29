"""HiBob adapter: people, lifecycle, tasks, time off and reports.

HiBob payloads are inconsistent across endpoints and tenants (``displayName`` vs
``about.displayName``, ``startDate`` vs ``employment.startDate`` vs
``work.startDate`` ...). The ``normalize_*`` functions map them onto the fixed
record shapes in ``adapters.records``.
"""
import asyncio
import csv
import io
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import requests
from pydantic import ValidationError

from config import Config
from utils.backoff import exponential_backoff
from utils.logger import get_logger
from utils.rate_limiter import RateLimiter, get_rate_limiter
from .errors import RateLimited, SourceError, SourceErrorKind, SourceUnavailable, unauthorized
from .records import (
    EmployeeRecord,
    LifecycleEventRecord,
    Portion,
    ReportRecord,
    TaskRecord,
    TaskStatus,
    TimeOffEntryRecord,
    TimeOffRequestRecord,
    WorkHistoryRecord,
)

logger = get_logger(__name__)

SOURCE = "hibob"

EMPLOYEE_FIELDS = [
    "id", "firstName", "lastName", "displayName", "email",
    "work", "about", "employment",
]

ENGAGEMENT_REPORT_KEYWORDS = ("engagement", "survey", "satisfaction", "feedback")

PORTIONS = {
    "all_day": Portion.FULL,
    "full": Portion.FULL,
    "morning": Portion.AM,
    "am": Portion.AM,
    "afternoon": Portion.PM,
    "pm": Portion.PM,
}

REPORT_POLL_ATTEMPTS = 5
REPORT_POLL_SECONDS = 2


# ============================================================================
# Normalizers
# ============================================================================

def _nested(payload: Dict[str, Any], *paths: str) -> Any:
    """First non-empty value among dotted paths."""
    for path in paths:
        value: Any = payload
        for part in path.split("."):
            if not isinstance(value, dict):
                value = None
                break
            value = value.get(part)
        if value not in (None, ""):
            return value
    return None


def _day(value: Any) -> Optional[str]:
    """Trim ISO datetimes to their date part."""
    if isinstance(value, str) and value:
        return value[:10]
    return value


def normalize_employee(payload: Dict[str, Any]) -> EmployeeRecord:
    manager = _nested(payload, "managerId", "work.reportsTo", "work.manager")
    if isinstance(manager, dict):
        manager = manager.get("id")

    return EmployeeRecord(
        id=str(payload["id"]),
        display_name=_nested(payload, "displayName", "about.displayName"),
        first_name=_nested(payload, "firstName", "about.firstName"),
        last_name=_nested(payload, "lastName", "about.surname", "about.lastName"),
        email=_nested(payload, "email", "about.email"),
        manager_id=str(manager) if manager is not None else None,
        department=_nested(payload, "department", "work.department"),
        site=_nested(payload, "site", "work.site"),
        job_title=_nested(payload, "jobTitle", "work.title"),
        start_date=_day(_nested(payload, "startDate", "employment.startDate", "work.startDate")),
        status=_nested(payload, "status", "employment.status"),
        avatar_url=_nested(payload, "avatarUrl", "about.avatarUrl"),
        employment_status=_nested(payload, "employment.status") or "Employed",
    )


def normalize_lifecycle_event(payload: Dict[str, Any]) -> LifecycleEventRecord:
    return LifecycleEventRecord(
        employee_id=str(payload.get("employeeId") or payload["employee_id"]),
        effective_date=_day(_nested(payload, "effectiveDate", "effective_date")),
        status=payload["status"],
        reason=payload.get("reason"),
        type=payload.get("type"),
    )


def normalize_work_history(payload: Dict[str, Any]) -> WorkHistoryRecord:
    return WorkHistoryRecord(
        employee_id=str(payload.get("employeeId") or payload["employee_id"]),
        effective_date=_day(_nested(payload, "effectiveDate", "effective_date")),
        department=payload.get("department"),
        site=payload.get("site"),
        manager=payload.get("manager"),
        job_title=_nested(payload, "jobTitle", "title"),
    )


def normalize_task(payload: Dict[str, Any]) -> TaskRecord:
    status = (payload.get("status") or "open").lower()
    last_updated = _nested(payload, "lastUpdated", "completedDate", "createdDate")
    if last_updated is None:
        logger.debug(f"Task {payload.get('id')} has no update time, using sync time")
        last_updated = datetime.utcnow()

    return TaskRecord(
        id=str(payload["id"]),
        employee_id=_nested(payload, "employeeId", "owner.id"),
        title=payload.get("title"),
        description=payload.get("description"),
        list_name=payload.get("listName"),
        status=TaskStatus(status),
        due_date=_day(payload.get("dueDate")),
        created_date=_day(payload.get("createdDate")),
        last_updated=last_updated,
        priority=payload.get("priority"),
        assignee=payload.get("assignee"),
        completed_date=_day(payload.get("completedDate")),
    )


def normalize_time_off_request(payload: Dict[str, Any]) -> TimeOffRequestRecord:
    created_at = _nested(payload, "createdAt", "updatedAt") or datetime.utcnow()
    return TimeOffRequestRecord(
        request_id=str(_nested(payload, "requestId", "id")),
        employee_id=str(payload["employeeId"]),
        policy_type=_nested(payload, "policyType", "policyTypeDisplayName"),
        start_date=_day(payload.get("startDate")),
        end_date=_day(payload.get("endDate")),
        dates=[_day(d) for d in payload.get("dates") or []],
        duration=payload.get("duration"),
        duration_unit=payload.get("durationUnit"),
        status=(payload.get("status") or "pending").lower(),
        reason=payload.get("reason"),
        created_at=created_at,
        updated_at=payload.get("updatedAt"),
        approved_at=payload.get("approvedAt"),
    )


def _portion(value: Optional[str]) -> Portion:
    return PORTIONS.get((value or "full").lower(), Portion.FULL)


def normalize_whos_out(payload: Dict[str, Any]) -> List[TimeOffEntryRecord]:
    """Expand a who's-out item into one entry per day.

    Items come either as single days (``date`` + ``portion``) or as ranges
    (``startDate``/``endDate`` with ``startPortion``/``endPortion``).
    """
    common = {
        "employee_id": str(payload["employeeId"]),
        "policy_type": _nested(payload, "policyType", "policyTypeDisplayName"),
        "request_id": str(payload["requestId"]) if payload.get("requestId") is not None else None,
        "approval_status": _nested(payload, "approvalStatus", "status"),
    }

    if payload.get("date"):
        return [TimeOffEntryRecord(date=_day(payload["date"]), portion=_portion(payload.get("portion")), **common)]

    start = date.fromisoformat(_day(payload["startDate"]))
    end = date.fromisoformat(_day(payload.get("endDate") or payload["startDate"]))

    entries = []
    day = start
    while day <= end:
        if day == start:
            portion = _portion(payload.get("startPortion"))
        elif day == end:
            portion = _portion(payload.get("endPortion"))
        else:
            portion = Portion.FULL
        entries.append(TimeOffEntryRecord(date=day, portion=portion, **common))
        day += timedelta(days=1)
    return entries


def parse_report_csv(content: str) -> List[Dict[str, str]]:
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    return [
        {key.strip(): (value or "").strip() for key, value in row.items() if key is not None}
        for row in reader
    ]


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def summarize_engagement_report(rows: List[Dict[str, str]]) -> Dict[str, Any]:
    """Average engagement score, per-department means and response rate.

    The score column is the first whose name mentions score, engagement or
    satisfaction; the department column the first mentioning department/dept.
    """
    if not rows:
        return {}

    columns = list(rows[0].keys())
    score_column = next(
        (c for c in columns if any(k in c.lower() for k in ("score", "engagement", "satisfaction"))),
        None,
    )
    dept_column = next(
        (c for c in columns if "department" in c.lower() or "dept" in c.lower()),
        None,
    )
    if score_column is None:
        return {"averageEngagementScore": 0, "responseRate": 0, "byDepartment": {}}

    scores = []
    by_department: Dict[str, List[float]] = {}
    for row in rows:
        score = _to_float(row.get(score_column))
        if score is None:
            continue
        scores.append(score)
        if dept_column and row.get(dept_column):
            by_department.setdefault(row[dept_column], []).append(score)

    return {
        "averageEngagementScore": sum(scores) / len(scores) if scores else 0,
        "responseRate": len(scores) / len(rows) * 100,
        "byDepartment": {dept: sum(v) / len(v) for dept, v in by_department.items()},
    }


def _items(response: Any, *keys: str) -> List[Dict[str, Any]]:
    """List under the first present key of a JSON response."""
    if not isinstance(response, dict):
        return []
    for key in keys:
        if response.get(key):
            return response[key]
    return []


def _normalize_all(items: List[Dict[str, Any]], normalizer: Callable, label: str) -> list:
    records = []
    for item in items:
        try:
            result = normalizer(item)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Skipping malformed {label} {item.get('id') or item.get('employeeId')}: {e}")
            continue
        if isinstance(result, list):
            records.extend(result)
        else:
            records.append(result)
    return records


# ============================================================================
# HTTP client
# ============================================================================

class HiBobClient:
    """Synchronous HiBob REST client using a service user (Basic auth)."""

    def __init__(
        self,
        service_user_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.base_url = (base_url or Config.HIBOB_BASE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (
            service_user_id or Config.HIBOB_SERVICE_USER_ID,
            api_key or Config.HIBOB_API_KEY,
        )
        self.session.headers.update({"Accept": "application/json"})

    def _check(self, response: requests.Response, endpoint: str):
        """Raise a typed error for a failed response."""
        if response.ok:
            return

        if response.status_code == 401:
            raise unauthorized(
                "HiBob authentication failed. Verify HIBOB_SERVICE_USER_ID and HIBOB_API_KEY.",
                SOURCE,
            )
        if response.status_code == 403:
            raise unauthorized(
                f"HiBob service user lacks permission for {endpoint}. Grant it access to this "
                f"data in the service user's permission group.",
                SOURCE,
            )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimited(
                f"HiBob rate limited {endpoint}",
                SOURCE,
                retry_after=float(retry_after) if retry_after else None,
            )

        raise SourceError(
            f"HiBob API error {response.status_code} on {endpoint}: {response.text[:200]}",
            SOURCE,
        )

    @exponential_backoff(
        max_attempts=Config.MAX_RETRIES,
        exceptions=(RateLimited, requests.ConnectionError, requests.Timeout),
    )
    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        self._check(response, url.replace(self.base_url, ""))
        return response

    def request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Send a request; returns decoded JSON, or text for non-JSON bodies."""
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"
        try:
            response = self._send(method, url, **kwargs)
        except requests.Timeout as e:
            raise SourceUnavailable(
                f"HiBob timed out on {endpoint}", SOURCE, kind=SourceErrorKind.TIMEOUT
            ) from e
        except requests.RequestException as e:
            raise SourceUnavailable(f"Cannot reach HiBob for {endpoint}: {e}", SOURCE) from e

        if "application/json" in response.headers.get("Content-Type", ""):
            return response.json()
        return response.text

    def download(self, url: str) -> str:
        """Fetch a pre-signed report file; those URLs reject our auth header."""
        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise SourceUnavailable(f"Cannot download HiBob report: {e}", SOURCE) from e
        if not response.ok:
            raise SourceError(f"Report download failed: {response.status_code}", SOURCE)
        return response.text

    def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", endpoint, params=params)

    def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", endpoint, json=data)


# ============================================================================
# Adapter
# ============================================================================

class HiBobAdapter:
    """Async facade over ``HiBobClient``; HTTP calls run in a worker thread."""

    def __init__(
        self,
        client: Optional[HiBobClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.client = client or HiBobClient()
        self.rate_limiter = rate_limiter or get_rate_limiter()

    async def _call(self, method_name: str, http_method: str, endpoint: str, **kwargs) -> Any:
        await self.rate_limiter.wait_if_needed(method_name)
        logger.debug(f"HiBob {http_method} {endpoint}")
        return await asyncio.to_thread(self.client.request, http_method, endpoint, **kwargs)

    async def get_employees(self) -> List[EmployeeRecord]:
        """All employees, with details fetched when the search returns bare ids."""
        response = await self._call(
            "hibob.people", "POST", "/v1/people/search",
            json={"fields": EMPLOYEE_FIELDS, "showInactive": True},
        )
        employees = _items(response, "employees")

        detailed = []
        for employee in employees:
            if set(employee.keys()) == {"id"}:
                details = await self._get_employee_payload(employee["id"])
                detailed.append(details or employee)
            else:
                detailed.append(employee)

        logger.info(f"Fetched {len(detailed)} employees from HiBob")
        return _normalize_all(detailed, normalize_employee, "employee")

    async def _get_employee_payload(self, employee_id: str) -> Optional[Dict[str, Any]]:
        response = await self._call(
            "hibob.people", "POST", "/v1/people/fields-by-employee-id",
            json={"employeeId": employee_id, "fields": EMPLOYEE_FIELDS},
        )
        return response.get("employee") if isinstance(response, dict) else None

    async def get_employee(self, employee_id: str) -> Optional[EmployeeRecord]:
        payload = await self._get_employee_payload(employee_id)
        if payload is None:
            return None
        payload.setdefault("id", employee_id)
        return normalize_employee(payload)

    async def get_lifecycle_history(self) -> List[LifecycleEventRecord]:
        response = await self._call("hibob.tables", "GET", "/v1/tables/lifecycle/history")
        return _normalize_all(_items(response, "history"), normalize_lifecycle_event, "lifecycle event")

    async def get_work_history(self) -> List[WorkHistoryRecord]:
        response = await self._call("hibob.tables", "GET", "/v1/tables/work/history")
        return _normalize_all(_items(response, "history"), normalize_work_history, "work history")

    async def get_open_tasks(self) -> List[TaskRecord]:
        response = await self._call("hibob.tasks", "GET", "/v1/tasks/open")
        return _normalize_all(_items(response, "tasks"), normalize_task, "task")

    async def get_employee_tasks(self, employee_id: str) -> List[TaskRecord]:
        response = await self._call("hibob.tasks", "GET", f"/v1/tasks/employees/{employee_id}")
        return _normalize_all(_items(response, "tasks"), normalize_task, "task")

    async def get_time_off_requests(
        self,
        since: Optional[datetime] = None,
        to: Optional[datetime] = None,
    ) -> List[TimeOffRequestRecord]:
        """Time-off requests changed in ``[since, to]``."""
        params = {}
        if since:
            params["since"] = since.isoformat()
        if to:
            params["to"] = to.isoformat()

        response = await self._call(
            "hibob.timeoff", "GET", "/v1/timeoff/requests/changes", params=params or None
        )
        items = _items(response, "requests", "changes")
        return _normalize_all(items, normalize_time_off_request, "time-off request")

    async def get_whos_out(self, from_date: date, to_date: date) -> List[TimeOffEntryRecord]:
        response = await self._call(
            "hibob.timeoff", "GET", "/v1/timeoff/whosout",
            params={"from": from_date.isoformat(), "to": to_date.isoformat()},
        )
        items = _items(response, "entries", "outs")
        return _normalize_all(items, normalize_whos_out, "who's-out entry")

    async def _download_report(self, report_id: str) -> str:
        for _ in range(REPORT_POLL_ATTEMPTS):
            response = await self._call("hibob.reports", "GET", f"/v1/reports/{report_id}/download")
            if isinstance(response, str):
                return response

            status = response.get("status")
            if status == "ready" and response.get("downloadUrl"):
                return await asyncio.to_thread(self.client.download, response["downloadUrl"])
            if status != "pending":
                raise SourceError(f"Report {report_id} download failed with status {status}", SOURCE)
            await asyncio.sleep(REPORT_POLL_SECONDS)

        raise SourceUnavailable(
            f"Report {report_id} still pending after {REPORT_POLL_ATTEMPTS} polls",
            SOURCE,
            kind=SourceErrorKind.TIMEOUT,
        )

    async def get_engagement_reports(self) -> List[ReportRecord]:
        """Download every engagement/survey report; a failing report is skipped."""
        response = await self._call("hibob.reports", "GET", "/v1/reports")
        reports = [
            report for report in _items(response, "reports")
            if any(k in (report.get("name") or "").lower() for k in ENGAGEMENT_REPORT_KEYWORDS)
        ]

        records = []
        for report in reports:
            try:
                content = await self._download_report(report["id"])
            except SourceError as e:
                if e.kind == SourceErrorKind.UNAUTHORIZED:
                    raise
                logger.warning(f"Failed to download report {report['name']}: {e}")
                continue

            rows = parse_report_csv(content)
            generated_at = datetime.utcnow()
            metadata = {
                "totalRows": len(rows),
                "generatedAt": generated_at.isoformat(),
                "columns": list(rows[0].keys()) if rows else [],
                **summarize_engagement_report(rows),
            }
            records.append(ReportRecord(
                report_name=report["name"],
                rows=rows,
                metadata=metadata,
                generated_at=generated_at,
            ))

        logger.info(f"Fetched {len(records)} of {len(reports)} engagement reports")
        return records
