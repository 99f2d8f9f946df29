"""Webinar attendance CSV parsing (Google Meet attendance export format)."""
import csv
import io
import re
from typing import Any, Dict, List

from pydantic import ValidationError

from utils.logger import get_logger
from .records import AttendeeRecord

logger = get_logger(__name__)

# CSV header -> AttendeeRecord field
COLUMNS = {
    "participant name": "participant_name",
    "attendance started at": "attendance_started_at",
    "joined at(beta)": "joined_at",
    "attendance stopped at": "attendance_stopped_at",
    "attended duration": "attended_duration",
    "meeting code": "meeting_code",
}

_HOURS = re.compile(r"(\d+)\s*h", re.IGNORECASE)
_MINUTES = re.compile(r"(\d+)\s*min", re.IGNORECASE)
_SECONDS = re.compile(r"(\d+)\s*s", re.IGNORECASE)


def parse_duration(duration: str) -> int:
    """'1h 2 min 35s' -> seconds."""
    total = 0
    for pattern, factor in ((_HOURS, 3600), (_MINUTES, 60), (_SECONDS, 1)):
        match = pattern.search(duration or "")
        if match:
            total += int(match.group(1)) * factor
    return total


def format_duration(seconds: int) -> str:
    """Seconds -> 'M:SS', or 'H:MM:SS' from one hour up."""
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def is_notetaker(participant_name: str) -> bool:
    """Fathom NoteTaker bots join meetings as participants."""
    name = participant_name.lower()
    return "fathom" in name and "notetaker" in name


def parse_attendees(content: str) -> List[AttendeeRecord]:
    """Parse attendance rows; rows missing a name or duration are skipped."""
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    attendees = []

    for line_number, row in enumerate(reader, start=2):
        values: Dict[str, Any] = {}
        for header, value in row.items():
            if header is None:
                continue
            key = COLUMNS.get(header.strip().lower())
            if key:
                values[key] = (value or "").strip() or None

        if not values.get("participant_name") or not values.get("attended_duration"):
            logger.debug(f"Skipping CSV line {line_number}: missing name or duration")
            continue

        try:
            attendees.append(AttendeeRecord(**values))
        except ValidationError as e:
            logger.warning(f"Skipping CSV line {line_number}: {e}")

    return attendees


def filter_notetakers(attendees: List[AttendeeRecord]) -> List[AttendeeRecord]:
    kept = [a for a in attendees if not is_notetaker(a.participant_name)]
    if len(kept) != len(attendees):
        logger.info(f"Filtered {len(attendees) - len(kept)} NoteTaker entries")
    return kept


def summarize_attendance(attendees: List[AttendeeRecord]) -> Dict[str, Any]:
    """Aggregate fields stored on a webinar."""
    if not attendees:
        return {"total_attendees": 0, "unique_attendees": 0, "average_duration": format_duration(0)}

    total_seconds = sum(parse_duration(a.attended_duration) for a in attendees)
    return {
        "total_attendees": len(attendees),
        "unique_attendees": len({a.participant_name for a in attendees}),
        "average_duration": format_duration(total_seconds // len(attendees)),
    }
