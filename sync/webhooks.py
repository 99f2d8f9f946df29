"""HiBob webhook handling.

Events are stored once per event id, then dispatched to a handler that
re-fetches the changed resource and upserts it. An event is only marked
processed after its handler succeeds, so a redelivered event is retried.
"""
from typing import Any, Awaitable, Callable, Dict, Optional

from adapters.errors import SourceError
from database.db_manager import DatabaseManager
from utils.logger import get_logger

logger = get_logger(__name__)


class HRWebhookProcessor:
    """Applies HiBob change notifications to the store."""

    def __init__(self, db_manager: Optional[DatabaseManager] = None, hibob: Optional[Any] = None):
        self.db = db_manager or DatabaseManager()
        self._hibob = hibob
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "employee.updated": self._handle_employee_updated,
            "task.changedStatus": self._handle_task_changed,
            "timeoff.request.created": self._handle_time_off_request,
            "timeoff.request.updated": self._handle_time_off_request,
        }

    @property
    def hibob(self):
        if self._hibob is None:
            from adapters.hibob import HiBobAdapter
            self._hibob = HiBobAdapter()
        return self._hibob

    async def process(self, event_type: str, event_id: str, payload: Dict[str, Any]) -> bool:
        """Store and handle one event. Returns True if it was handled now."""
        resource_type = payload.get("resourceType") or event_type.split(".")[0]
        resource_id = payload.get("resourceId") or payload.get("employeeId")

        event, created = self.db.save_webhook_event(
            event_id, event_type, payload, resource_type=resource_type, resource_id=resource_id
        )
        if not created and event.processed:
            logger.info(f"Webhook {event_id} already processed, skipping")
            return False

        handler = self.handlers.get(event_type)
        if handler is None:
            logger.info(f"No handler for webhook type {event_type}")
            self.db.mark_webhook_processed(event_id)
            return True

        try:
            await handler(payload)
        except SourceError as e:
            logger.error(f"Webhook {event_id} ({event_type}) failed: {e}")
            return False

        self.db.mark_webhook_processed(event_id)
        logger.info(f"Processed webhook {event_id} ({event_type})")
        return True

    async def _handle_employee_updated(self, payload: Dict[str, Any]):
        employee_id = payload.get("employeeId")
        if not employee_id:
            logger.warning("employee.updated webhook without employeeId")
            return

        employee = await self.hibob.get_employee(employee_id)
        if employee is None:
            logger.warning(f"Employee {employee_id} not found upstream")
            return
        self.db.save_employee(employee)

    async def _handle_task_changed(self, payload: Dict[str, Any]):
        employee_id = payload.get("employeeId")
        task_id = str(payload.get("taskId", ""))
        if not (employee_id and task_id):
            logger.warning("task.changedStatus webhook without employeeId/taskId")
            return

        tasks = await self.hibob.get_employee_tasks(employee_id)
        task = next((t for t in tasks if t.id == task_id), None)
        if task is None:
            logger.warning(f"Task {task_id} not found for employee {employee_id}")
            return
        self.db.save_task(task)

    async def _handle_time_off_request(self, payload: Dict[str, Any]):
        request_id = str(payload.get("requestId", ""))
        if not request_id:
            logger.warning("time-off webhook without requestId")
            return

        requests = await self.hibob.get_time_off_requests()
        request = next((r for r in requests if r.request_id == request_id), None)
        if request is None:
            logger.warning(f"Time-off request {request_id} not found upstream")
            return
        self.db.save_time_off_request(request)
