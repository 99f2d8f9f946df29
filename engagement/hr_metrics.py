"""HR dashboard rollups over the stored HiBob data."""
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import case, func

from database.db_manager import DatabaseManager
from database.models import (
    Employee,
    LifecycleEvent,
    ReportData,
    Task,
    TimeOffEntry,
    TimeOffRequest,
    WorkHistory,
)
from utils.logger import get_logger
from .aggregation import utc_today

logger = get_logger(__name__)

LEAVER_STATUSES = ("Terminated", "Resigned")
DUE_SOON_DAYS = 7
COMPLETION_WINDOW_DAYS = 30
REQUEST_WINDOW_DAYS = 30
WEEK_DAYS = 7
MONTH_DAYS = 30
MOBILITY_WINDOW_DAYS = 90
ANNIVERSARY_WINDOW_DAYS = 30
DAYS_PER_YEAR = 365.25


def _rate(part: int, total: int) -> float:
    return part / total * 100 if total > 0 else 0


def _report_dict(report: ReportData) -> Dict[str, Any]:
    return {
        "report_name": report.report_name,
        "rows": report.rows or [],
        "metadata": report.report_metadata or {},
        "generated_at": report.generated_at.isoformat() if report.generated_at else None,
    }


def _in_year(start: date, year: int) -> date:
    try:
        return start.replace(year=year)
    except ValueError:
        # Feb 29 outside a leap year
        return date(year, 2, 28)


def next_anniversary(start: date, today: date) -> date:
    """First work anniversary on or after ``today``."""
    anniversary = _in_year(start, today.year)
    if anniversary < today:
        anniversary = _in_year(start, today.year + 1)
    return anniversary


class HRMetrics:
    """Headcount, task, time-off and engagement-survey metrics."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        today_fn: Optional[Callable[[], date]] = None,
    ):
        self.db = db_manager or DatabaseManager()
        self.today_fn = today_fn or utc_today

    def dashboard_metrics(self) -> Dict[str, Any]:
        return {
            "headcount": self.headcount(),
            "tasks": self.tasks(),
            "timeOff": self.time_off(),
            "engagement": self.engagement(),
        }

    def headcount(self) -> Dict[str, Any]:
        today = self.today_fn()
        since_30 = today - timedelta(days=30)
        since_90 = today - timedelta(days=90)
        employed = Employee.employment_status == "Employed"

        with self.db.get_session() as session:
            total, joiners_30, joiners_90 = session.query(
                func.count(Employee.employee_id),
                func.sum(case((Employee.start_date >= since_30, 1), else_=0)),
                func.sum(case((Employee.start_date >= since_90, 1), else_=0)),
            ).filter(employed).one()

            leavers_30, leavers_90 = session.query(
                func.sum(case((LifecycleEvent.effective_date >= since_30, 1), else_=0)),
                func.sum(case((LifecycleEvent.effective_date >= since_90, 1), else_=0)),
            ).filter(LifecycleEvent.status.in_(LEAVER_STATUSES)).one()

            by_department = dict(session.query(
                Employee.department, func.count(Employee.employee_id)
            ).filter(employed, Employee.department.isnot(None)).group_by(Employee.department).all())

            by_site = dict(session.query(
                Employee.site, func.count(Employee.employee_id)
            ).filter(employed, Employee.site.isnot(None)).group_by(Employee.site).all())

        return {
            "total": total or 0,
            "byDepartment": by_department,
            "bySite": by_site,
            "joiners30d": joiners_30 or 0,
            "joiners90d": joiners_90 or 0,
            "leavers30d": leavers_30 or 0,
            "leavers90d": leavers_90 or 0,
        }

    def tasks(self) -> Dict[str, Any]:
        today = self.today_fn()
        due_soon_end = today + timedelta(days=DUE_SOON_DAYS)
        completion_since = datetime.combine(today - timedelta(days=COMPLETION_WINDOW_DAYS), time.min)
        is_open = Task.status == "open"
        is_completed = case((Task.status == "completed", 1), else_=0)

        with self.db.get_session() as session:
            total_open, overdue, due_soon = session.query(
                func.count(Task.task_id),
                func.sum(case((Task.due_date < today, 1), else_=0)),
                func.sum(case((Task.due_date.between(today, due_soon_end), 1), else_=0)),
            ).filter(is_open).one()

            completed_30, total_30 = session.query(
                func.sum(is_completed),
                func.count(Task.task_id),
            ).filter(Task.last_updated >= completion_since).one()

            department_rows = session.query(
                Employee.department,
                func.count(Task.task_id),
                func.sum(is_completed),
            ).join(
                Employee, Employee.employee_id == Task.employee_id
            ).filter(Employee.department.isnot(None)).group_by(Employee.department).all()

        return {
            "totalOpen": total_open or 0,
            "completionRate30d": _rate(completed_30 or 0, total_30 or 0),
            "overdueCount": overdue or 0,
            "dueSoonCount": due_soon or 0,
            "byDepartment": {
                department: {
                    "total": total,
                    "completed": completed or 0,
                    "rate": _rate(completed or 0, total),
                }
                for department, total, completed in department_rows
            },
        }

    def _out_between(self, session, start: date, end: date) -> int:
        return session.query(
            func.count(func.distinct(TimeOffEntry.employee_id))
        ).filter(TimeOffEntry.date.between(start, end)).scalar() or 0

    def time_off(self) -> Dict[str, Any]:
        today = self.today_fn()
        requests_since = datetime.combine(today - timedelta(days=REQUEST_WINDOW_DAYS), time.min)

        with self.db.get_session() as session:
            total, approved = session.query(
                func.count(TimeOffRequest.request_id),
                func.sum(case((TimeOffRequest.status == "approved", 1), else_=0)),
            ).filter(TimeOffRequest.created_at >= requests_since).one()

            out_today = self._out_between(session, today, today)
            out_week = self._out_between(session, today, today + timedelta(days=WEEK_DAYS))
            out_month = self._out_between(session, today, today + timedelta(days=MONTH_DAYS))

        return {
            "totalRequests30d": total or 0,
            "approvedRequests30d": approved or 0,
            "approvalRate30d": _rate(approved or 0, total or 0),
            "whosOutToday": out_today,
            "whosOutThisWeek": out_week,
            "upcomingThisMonth": out_month,
        }

    def engagement(self) -> Dict[str, Any]:
        """Summary of the latest engagement survey report, or {} if none is stored."""
        with self.db.get_session() as session:
            report = session.query(ReportData).filter(
                func.lower(ReportData.report_name).like("%engagement%")
            ).order_by(ReportData.generated_at.desc()).first()

        if report is None:
            return {}

        metadata = report.report_metadata or {}
        return {
            "averageEngagementScore": metadata.get("averageEngagementScore"),
            "responseRate": metadata.get("responseRate"),
            "byDepartment": metadata.get("byDepartment") or {},
        }

    # ------------------------------------------------------------------
    # Detail reads
    # ------------------------------------------------------------------

    def org_mobility(self, days: int = MOBILITY_WINDOW_DAYS) -> List[Dict[str, Any]]:
        """Work history changes effective in the last ``days`` days, newest first."""
        since = self.today_fn() - timedelta(days=days)

        with self.db.get_session() as session:
            rows = session.query(WorkHistory, Employee.display_name).outerjoin(
                Employee, Employee.employee_id == WorkHistory.employee_id
            ).filter(
                WorkHistory.effective_date >= since
            ).order_by(WorkHistory.effective_date.desc(), WorkHistory.employee_id).all()

        return [
            {
                "employee_id": entry.employee_id,
                "employee_name": name,
                "effective_date": entry.effective_date.isoformat(),
                "department": entry.department,
                "site": entry.site,
                "manager": entry.manager,
                "job_title": entry.job_title,
            }
            for entry, name in rows
        ]

    def tenure(self) -> Dict[str, Any]:
        """Tenure of employed staff and anniversaries due within 30 days."""
        today = self.today_fn()

        with self.db.get_session() as session:
            employees = session.query(Employee).filter(
                Employee.employment_status == "Employed",
                Employee.start_date.isnot(None),
                Employee.start_date <= today,
            ).all()

        tenure = []
        anniversaries = []
        for employee in employees:
            years = (today - employee.start_date).days / DAYS_PER_YEAR
            tenure.append({
                "id": employee.employee_id,
                "display_name": employee.display_name,
                "start_date": employee.start_date.isoformat(),
                "department": employee.department,
                "site": employee.site,
                "tenure_years": round(years, 2),
            })

            anniversary = next_anniversary(employee.start_date, today)
            days_to = (anniversary - today).days
            completed = anniversary.year - employee.start_date.year
            if completed >= 1 and days_to <= ANNIVERSARY_WINDOW_DAYS:
                anniversaries.append({
                    "id": employee.employee_id,
                    "display_name": employee.display_name,
                    "department": employee.department,
                    "anniversary_date": anniversary.isoformat(),
                    "years": completed,
                    "days_to_next_anniversary": days_to,
                })

        tenure.sort(key=lambda row: (-row["tenure_years"], row["id"]))
        anniversaries.sort(key=lambda row: (row["days_to_next_anniversary"], row["id"]))
        return {"tenure": tenure, "upcomingAnniversaries": anniversaries}

    def whos_out(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        department: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Time-off entries between ``start`` and ``end`` (default: the next week)."""
        start = start or self.today_fn()
        end = end or start + timedelta(days=WEEK_DAYS)

        with self.db.get_session() as session:
            query = session.query(
                TimeOffEntry, Employee.display_name, Employee.department, Employee.site
            ).outerjoin(
                Employee, Employee.employee_id == TimeOffEntry.employee_id
            ).filter(TimeOffEntry.date.between(start, end))
            if department:
                query = query.filter(Employee.department == department)

            rows = query.order_by(
                TimeOffEntry.date, Employee.display_name, TimeOffEntry.employee_id
            ).all()

        return [
            {
                "employee_id": entry.employee_id,
                "employee_name": name,
                "department": employee_department,
                "site": site,
                "date": entry.date.isoformat(),
                "portion": entry.portion,
                "policy_type": entry.policy_type,
                "request_id": entry.request_id,
                "approval_status": entry.approval_status,
            }
            for entry, name, employee_department, site in rows
        ]

    def time_off_calendar(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Dict[str, Any]]:
        """Per-day count of people out, with the policy types and departments involved."""
        start = start or self.today_fn()
        end = end or start + timedelta(days=MONTH_DAYS)

        with self.db.get_session() as session:
            rows = session.query(
                TimeOffEntry.date, TimeOffEntry.employee_id, TimeOffEntry.policy_type, Employee.department
            ).outerjoin(
                Employee, Employee.employee_id == TimeOffEntry.employee_id
            ).filter(TimeOffEntry.date.between(start, end)).all()

        days: Dict[date, Dict[str, set]] = {}
        for day, employee_id, policy_type, department in rows:
            bucket = days.setdefault(day, {"employees": set(), "policy_types": set(), "departments": set()})
            bucket["employees"].add(employee_id)
            if policy_type:
                bucket["policy_types"].add(policy_type)
            if department:
                bucket["departments"].add(department)

        return [
            {
                "date": day.isoformat(),
                "total_out": len(bucket["employees"]),
                "policy_types": sorted(bucket["policy_types"]),
                "departments": sorted(bucket["departments"]),
            }
            for day, bucket in sorted(days.items())
        ]

    def list_reports(self) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            reports = session.query(ReportData).order_by(
                ReportData.generated_at.desc(), ReportData.report_name
            ).all()
        return [_report_dict(report) for report in reports]

    def get_report(self, name: str) -> Optional[Dict[str, Any]]:
        with self.db.get_session() as session:
            report = session.query(ReportData).filter(ReportData.report_name == name).first()
        return _report_dict(report) if report else None
