"""Webinar attendance imports and statistics."""
import pytest

from adapters.webinar_csv import (
    format_duration,
    is_notetaker,
    parse_attendees,
    parse_duration,
    summarize_attendance,
)
from engagement.webinars import WebinarService

HEADER = "Participant Name,Attendance Started At,Joined At(beta),Attendance Stopped At,Attended Duration,Meeting Code\n"

EXPORT = HEADER + (
    "Ann,10:00,10:00,10:30,30 min,abc-defg-hij\n"
    "Bob,10:00,10:01,11:01,1h 0 min 0s,abc-defg-hij\n"
    "Fathom NoteTaker,10:00,10:00,11:00,1h,abc-defg-hij\n"
    "Ann,10:40,10:40,10:55,15 min 30s,abc-defg-hij\n"
    ",10:00,10:00,10:10,10 min,abc-defg-hij\n"
    "Cid,10:00,10:00,10:10,,abc-defg-hij\n"
)


@pytest.fixture
def service(db):
    return WebinarService(db)


@pytest.mark.parametrize("text, seconds", [
    ("1h 2 min 35s", 3755),
    ("45 min", 2700),
    ("20s", 20),
    ("", 0),
])
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


def test_format_duration():
    assert format_duration(2110) == "35:10"
    assert format_duration(3755) == "1:02:35"


def test_empty_attendance_uses_the_duration_format():
    assert summarize_attendance([]) == {
        "total_attendees": 0,
        "unique_attendees": 0,
        "average_duration": format_duration(0),
    }
    assert format_duration(0) == "0:00"


def test_notetaker_needs_both_words():
    assert is_notetaker("Fathom NoteTaker (Dana)")
    assert not is_notetaker("Fathom Smith")


def test_parse_skips_rows_without_name_or_duration():
    attendees = parse_attendees("\ufeff" + EXPORT)

    assert [a.participant_name for a in attendees] == ["Ann", "Bob", "Fathom NoteTaker", "Ann"]
    assert attendees[0].meeting_code == "abc-defg-hij"
    assert attendees[1].joined_at == "10:01"


def test_upload_filters_notetakers_and_summarizes(service):
    result = service.upload_csv(EXPORT, "Kickoff", "Dana")

    assert result["success"] is True
    assert result["attendees_imported"] == 3
    assert result["attendees_filtered"] == 1
    assert "1 NoteTaker" in result["message"]

    webinar = service.get_webinar(result["webinar_id"])
    assert webinar["host"] == "Dana"
    assert webinar["meeting_code"] == "abc-defg-hij"
    assert (webinar["total_attendees"], webinar["unique_attendees"]) == (3, 2)
    # (1800 + 3600 + 930) / 3 seconds
    assert webinar["average_duration"] == "35:10"
    assert [a["participant_name"] for a in webinar["attendees"]] == ["Ann", "Ann", "Bob"]


def test_stats_and_hosts(service):
    service.upload_csv(EXPORT, "Kickoff", "Dana")
    service.upload_csv(HEADER + "Eve,9:00,9:00,9:20,20 min,xyz\n", "Retro", "Lee")
    service.upload_csv(HEADER + "Fay,9:00,9:00,9:20,20 min,xyz\n", "Demo", "Lee")

    stats = service.get_webinar_stats()

    assert stats["total_webinars"] == 3
    assert stats["total_attendees"] == 5
    assert stats["average_attendance_per_webinar"] == 2
    assert stats["most_popular_host"] == "Dana"
    assert stats["top_webinars_by_attendance"][0]["name"] == "Kickoff"

    hosts = service.get_webinar_hosts()
    assert [(h["name"], h["webinar_count"], h["total_attendees"]) for h in hosts] == [("Lee", 2, 2), ("Dana", 1, 3)]


def test_empty_stats(service):
    stats = service.get_webinar_stats()

    assert stats["total_webinars"] == 0
    assert stats["most_popular_host"] == "N/A"
    assert stats["recent_webinars"] == []


def test_delete(service):
    webinar_id = service.upload_csv(EXPORT, "Kickoff", "Dana")["webinar_id"]

    assert service.delete_webinar(webinar_id) is True
    assert service.get_webinar(webinar_id) is None
    assert service.delete_webinar(webinar_id) is False
