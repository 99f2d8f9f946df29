"""Read-side entry point for dashboards and the CLI.

Every method either returns a complete result or raises ``QueryFailure``; store
errors are never turned into empty results.
"""
import functools
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from config import Config
from database.db_manager import DatabaseManager
from database.errors import QueryFailure
from database.models import Employee, Task, TimeOffRequest
from utils.logger import get_logger
from .aggregation import AggregationEngine
from .hr_metrics import HRMetrics

logger = get_logger(__name__)


def wraps_store_errors(method: Callable) -> Callable:
    """Re-raise store failures as ``QueryFailure``."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Query {method.__name__} failed: {e}")
            raise QueryFailure(method.__name__, e) from e
    return wrapper


def _employee_dict(employee: Employee) -> Dict[str, Any]:
    return {
        "id": employee.employee_id,
        "display_name": employee.display_name,
        "email": employee.email,
        "department": employee.department,
        "site": employee.site,
        "job_title": employee.job_title,
        "manager_id": employee.manager_id,
        "start_date": employee.start_date.isoformat() if employee.start_date else None,
        "employment_status": employee.employment_status,
    }


def _task_dict(task: Task) -> Dict[str, Any]:
    return {
        "id": task.task_id,
        "employee_id": task.employee_id,
        "title": task.title,
        "list_name": task.list_name,
        "status": task.status,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "last_updated": task.last_updated.isoformat() if task.last_updated else None,
        "priority": task.priority,
        "assignee": task.assignee,
    }


def _request_dict(request: TimeOffRequest) -> Dict[str, Any]:
    return {
        "request_id": request.request_id,
        "employee_id": request.employee_id,
        "policy_type": request.policy_type,
        "start_date": request.start_date.isoformat() if request.start_date else None,
        "end_date": request.end_date.isoformat() if request.end_date else None,
        "duration": request.duration,
        "duration_unit": request.duration_unit,
        "status": request.status,
        "created_at": request.created_at.isoformat() if request.created_at else None,
    }


class QueryFacade:
    """Engagement, activation and HR queries over the rollups."""

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        engine: Optional[AggregationEngine] = None,
        hr_metrics: Optional[HRMetrics] = None,
    ):
        self.db = db_manager or DatabaseManager()
        self.engine = engine or AggregationEngine(self.db)
        self.hr_metrics = hr_metrics or HRMetrics(self.db, today_fn=self.engine.today_fn)

    # Engagement
    @wraps_store_errors
    def get_engagement_metrics(
        self,
        channel_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        return self.engine.engagement_metrics(channel_id, start_date, end_date)

    @wraps_store_errors
    def get_workspace_overview(self, days: int = 30) -> Dict[str, Any]:
        return self.engine.workspace_overview(days)

    @wraps_store_errors
    def get_channel_activity(self, channel_id: str, days: int = 30) -> Dict[str, Any]:
        return self.engine.channel_activity(channel_id, days)

    @wraps_store_errors
    def get_user_rankings(
        self,
        channel_id: Optional[str] = None,
        days: int = 30,
        limit: int = Config.USER_RANKINGS_LIMIT,
    ) -> List[Dict[str, Any]]:
        return self.engine.user_rankings(channel_id, days, limit)

    @wraps_store_errors
    def get_top_posts(self, days: int = 30, limit: int = Config.TOP_POSTS_LIMIT) -> List[Dict[str, Any]]:
        return self.engine.top_posts(days, limit)

    @wraps_store_errors
    def get_user_activation_metrics(self, days: int = 30) -> Dict[str, Any]:
        return self.engine.user_activation(days)

    # HR
    @wraps_store_errors
    def get_dashboard_metrics(self) -> Dict[str, Any]:
        return self.hr_metrics.dashboard_metrics()

    @wraps_store_errors
    def get_org_mobility(self, days: int = 90) -> List[Dict[str, Any]]:
        return self.hr_metrics.org_mobility(days)

    @wraps_store_errors
    def get_tenure(self) -> Dict[str, Any]:
        return self.hr_metrics.tenure()

    @wraps_store_errors
    def get_whos_out(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
        department: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return self.hr_metrics.whos_out(start, end, department)

    @wraps_store_errors
    def get_time_off_calendar(self, start: Optional[date] = None, end: Optional[date] = None) -> List[Dict[str, Any]]:
        return self.hr_metrics.time_off_calendar(start, end)

    @wraps_store_errors
    def list_reports(self) -> List[Dict[str, Any]]:
        return self.hr_metrics.list_reports()

    @wraps_store_errors
    def get_report(self, name: str) -> Optional[Dict[str, Any]]:
        """Latest stored rows of a report, or None if it was never synced."""
        return self.hr_metrics.get_report(name)

    @wraps_store_errors
    def list_employees(
        self,
        department: Optional[str] = None,
        employment_status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            query = session.query(Employee)
            if department:
                query = query.filter(Employee.department == department)
            if employment_status:
                query = query.filter(Employee.employment_status == employment_status)
            employees = query.order_by(Employee.display_name, Employee.employee_id).offset(offset).limit(limit).all()
            return [_employee_dict(e) for e in employees]

    @wraps_store_errors
    def list_tasks(
        self,
        status: Optional[str] = None,
        employee_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            query = session.query(Task)
            if status:
                query = query.filter(Task.status == status)
            if employee_id:
                query = query.filter(Task.employee_id == employee_id)
            tasks = query.order_by(Task.due_date.is_(None), Task.due_date, Task.task_id).offset(offset).limit(limit).all()
            return [_task_dict(t) for t in tasks]

    @wraps_store_errors
    def list_time_off_requests(
        self,
        status: Optional[str] = None,
        employee_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            query = session.query(TimeOffRequest)
            if status:
                query = query.filter(TimeOffRequest.status == status)
            if employee_id:
                query = query.filter(TimeOffRequest.employee_id == employee_id)
            requests = query.order_by(
                TimeOffRequest.created_at.desc(), TimeOffRequest.request_id
            ).offset(offset).limit(limit).all()
            return [_request_dict(r) for r in requests]

    @wraps_store_errors
    def get_statistics(self) -> Dict[str, Any]:
        return self.db.get_statistics()
