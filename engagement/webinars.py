"""Webinar attendance: CSV uploads and attendance statistics."""
from typing import Any, Dict, List, Optional

from sqlalchemy import func

from adapters.webinar_csv import filter_notetakers, parse_attendees
from database.db_manager import DatabaseManager
from database.models import Webinar, WebinarAttendee, WebinarHost
from utils.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_HOST = "Unknown Host"
STATS_LIST_SIZE = 5


def _attendee_dict(attendee: WebinarAttendee) -> Dict[str, Any]:
    return {
        "id": attendee.id,
        "participant_name": attendee.participant_name,
        "attendance_started_at": attendee.attendance_started_at,
        "joined_at": attendee.joined_at,
        "attendance_stopped_at": attendee.attendance_stopped_at,
        "attended_duration": attendee.attended_duration,
        "meeting_code": attendee.meeting_code,
    }


class WebinarService:
    """Stores webinar attendance exports and summarizes them."""

    def __init__(self, db_manager: Optional[DatabaseManager] = None):
        self.db = db_manager or DatabaseManager()

    def upload_csv(self, content: str, name: str, host: str) -> Dict[str, Any]:
        """Import one attendance export as a new webinar."""
        attendees = parse_attendees(content)
        kept = filter_notetakers(attendees)
        meeting_code = attendees[0].meeting_code if attendees else None

        webinar = self.db.save_webinar(name, host, kept, meeting_code=meeting_code)
        filtered = len(attendees) - len(kept)

        return {
            "success": True,
            "webinar_id": webinar.id,
            "attendees_imported": webinar.total_attendees,
            "attendees_filtered": filtered,
            "message": (
                f"Imported {webinar.total_attendees} attendees"
                + (f" ({filtered} NoteTaker entries filtered out)" if filtered else "")
            ),
        }

    def _webinar_dict(self, session, webinar: Webinar) -> Dict[str, Any]:
        attendees = session.query(WebinarAttendee).filter_by(
            webinar_id=webinar.id
        ).order_by(WebinarAttendee.participant_name, WebinarAttendee.id).all()

        return {
            "id": webinar.id,
            "name": webinar.name,
            "host": webinar.host.name if webinar.host else UNKNOWN_HOST,
            "host_id": webinar.host_id,
            "meeting_code": webinar.meeting_code,
            "total_attendees": webinar.total_attendees,
            "unique_attendees": webinar.unique_attendees,
            "average_duration": webinar.average_duration,
            "created_at": webinar.created_at.isoformat() if webinar.created_at else None,
            "updated_at": webinar.updated_at.isoformat() if webinar.updated_at else None,
            "attendees": [_attendee_dict(a) for a in attendees],
        }

    def get_webinars(self) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            webinars = session.query(Webinar).order_by(Webinar.created_at.desc(), Webinar.id.desc()).all()
            return [self._webinar_dict(session, w) for w in webinars]

    def get_webinar(self, webinar_id: int) -> Optional[Dict[str, Any]]:
        with self.db.get_session() as session:
            webinar = session.query(Webinar).filter_by(id=webinar_id).first()
            if webinar is None:
                return None
            return self._webinar_dict(session, webinar)

    def get_webinar_hosts(self) -> List[Dict[str, Any]]:
        with self.db.get_session() as session:
            webinar_count = func.count(Webinar.id)
            total_attendees = func.coalesce(func.sum(Webinar.total_attendees), 0)
            rows = session.query(
                WebinarHost.id, WebinarHost.name, webinar_count, total_attendees
            ).outerjoin(
                Webinar, Webinar.host_id == WebinarHost.id
            ).group_by(WebinarHost.id, WebinarHost.name).order_by(
                webinar_count.desc(), total_attendees.desc(), WebinarHost.name
            ).all()

        return [
            {"id": host_id, "name": name, "webinar_count": count, "total_attendees": attendees}
            for host_id, name, count, attendees in rows
        ]

    def get_webinar_stats(self) -> Dict[str, Any]:
        with self.db.get_session() as session:
            total_webinars, total_attendees, average = session.query(
                func.count(Webinar.id),
                func.coalesce(func.sum(Webinar.total_attendees), 0),
                func.avg(Webinar.total_attendees),
            ).one()

            attendee_sum = func.sum(Webinar.total_attendees)
            popular_host = session.query(WebinarHost.name).join(
                Webinar, Webinar.host_id == WebinarHost.id
            ).group_by(WebinarHost.id, WebinarHost.name).order_by(
                attendee_sum.desc(), WebinarHost.name
            ).first()

            top = session.query(Webinar).order_by(
                Webinar.total_attendees.desc(), Webinar.id
            ).limit(STATS_LIST_SIZE).all()
            recent = session.query(Webinar).order_by(
                Webinar.created_at.desc(), Webinar.id.desc()
            ).limit(STATS_LIST_SIZE).all()

            return {
                "total_webinars": total_webinars or 0,
                "total_attendees": total_attendees or 0,
                "average_attendance_per_webinar": round(average or 0),
                "most_popular_host": popular_host[0] if popular_host else "N/A",
                "top_webinars_by_attendance": [self._webinar_dict(session, w) for w in top],
                "recent_webinars": [self._webinar_dict(session, w) for w in recent],
            }

    def delete_webinar(self, webinar_id: int) -> bool:
        return self.db.delete_webinar(webinar_id)
