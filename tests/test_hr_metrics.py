"""HR dashboard rollups."""
from datetime import date, datetime, timedelta

import pytest

from adapters.records import (
    EmployeeRecord,
    LifecycleEventRecord,
    ReportRecord,
    TaskRecord,
    TaskStatus,
    TimeOffEntryRecord,
    TimeOffRequestRecord,
    WorkHistoryRecord,
)
from database.errors import QueryFailure
from database.models import Base
from engagement.hr_metrics import HRMetrics, next_anniversary
from factories import TODAY, at


@pytest.fixture
def hr(db):
    return HRMetrics(db, today_fn=lambda: TODAY)


def test_headcount(db, hr):
    db.save_employee(EmployeeRecord(id="E1", display_name="A", department="R&D", site="Berlin",
                                    start_date=TODAY - timedelta(days=10)))
    db.save_employee(EmployeeRecord(id="E2", display_name="B", department="R&D", site="London",
                                    start_date=TODAY - timedelta(days=60)))
    db.save_employee(EmployeeRecord(id="E3", display_name="C", department="Sales",
                                    start_date=date(2020, 1, 1)))
    db.save_employee(EmployeeRecord(id="E4", display_name="D", department="Sales",
                                    employment_status="Terminated"))
    db.save_lifecycle_event(LifecycleEventRecord(employee_id="E4", status="Terminated",
                                                 effective_date=TODAY - timedelta(days=5)))
    db.save_lifecycle_event(LifecycleEventRecord(employee_id="E5", status="Resigned",
                                                 effective_date=TODAY - timedelta(days=45)))
    db.save_lifecycle_event(LifecycleEventRecord(employee_id="E1", status="Employed",
                                                 effective_date=TODAY - timedelta(days=10)))

    headcount = hr.headcount()

    assert headcount["total"] == 3
    assert headcount["byDepartment"] == {"R&D": 2, "Sales": 1}
    assert headcount["bySite"] == {"Berlin": 1, "London": 1}
    assert (headcount["joiners30d"], headcount["joiners90d"]) == (1, 2)
    assert (headcount["leavers30d"], headcount["leavers90d"]) == (1, 2)


def test_tasks(db, hr):
    db.save_employee(EmployeeRecord(id="E1", display_name="A", department="R&D"))
    recent = at(TODAY - timedelta(days=2))
    db.save_task(TaskRecord(id="T1", employee_id="E1", due_date=TODAY - timedelta(days=1), last_updated=recent))
    db.save_task(TaskRecord(id="T2", employee_id="E1", due_date=TODAY + timedelta(days=3), last_updated=recent))
    db.save_task(TaskRecord(id="T3", employee_id="E1", status=TaskStatus.COMPLETED, last_updated=recent))
    db.save_task(TaskRecord(id="T4", employee_id="E1", status=TaskStatus.COMPLETED,
                            last_updated=at(TODAY - timedelta(days=90))))

    tasks = hr.tasks()

    assert tasks["totalOpen"] == 2
    assert tasks["overdueCount"] == 1
    assert tasks["dueSoonCount"] == 1
    # T1, T2, T3 updated in the last 30 days; one of them completed
    assert tasks["completionRate30d"] == pytest.approx(100 / 3)
    assert tasks["byDepartment"]["R&D"] == {"total": 4, "completed": 2, "rate": 50}


def test_time_off(db, hr):
    created = at(TODAY - timedelta(days=3))
    db.save_time_off_request(TimeOffRequestRecord(request_id="R1", employee_id="E1", status="approved",
                                                  created_at=created))
    db.save_time_off_request(TimeOffRequestRecord(request_id="R2", employee_id="E2", status="pending",
                                                  created_at=created))
    db.save_time_off_request(TimeOffRequestRecord(request_id="R3", employee_id="E3", status="approved",
                                                  created_at=datetime(2023, 1, 1)))
    for offset in (0, 1):
        db.save_time_off_entry(TimeOffEntryRecord(employee_id="E1", date=TODAY + timedelta(days=offset),
                                                  request_id="R1"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E2", date=TODAY + timedelta(days=20), request_id="R2"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E3", date=TODAY + timedelta(days=45), request_id="R9"))

    time_off = hr.time_off()

    assert time_off["totalRequests30d"] == 2
    assert time_off["approvedRequests30d"] == 1
    assert time_off["approvalRate30d"] == 50
    assert time_off["whosOutToday"] == 1
    assert time_off["whosOutThisWeek"] == 1
    assert time_off["upcomingThisMonth"] == 2


def test_engagement_reads_latest_survey(db, hr):
    db.save_report_data(ReportRecord(report_name="Engagement Survey Q3", generated_at=datetime(2023, 10, 1),
                                     metadata={"averageEngagementScore": 3.0, "responseRate": 50.0,
                                               "byDepartment": {}}))
    db.save_report_data(ReportRecord(report_name="Engagement Survey Q4", generated_at=datetime(2024, 1, 2),
                                     metadata={"averageEngagementScore": 4.2, "responseRate": 80.0,
                                               "byDepartment": {"R&D": 4.5}}))
    db.save_report_data(ReportRecord(report_name="Headcount export", generated_at=datetime(2024, 1, 9)))

    assert hr.engagement() == {
        "averageEngagementScore": 4.2,
        "responseRate": 80.0,
        "byDepartment": {"R&D": 4.5},
    }


def test_empty_store(hr):
    metrics = hr.dashboard_metrics()

    assert metrics["headcount"]["total"] == 0
    assert metrics["tasks"]["completionRate30d"] == 0
    assert metrics["timeOff"]["approvalRate30d"] == 0
    assert metrics["engagement"] == {}


def test_org_mobility_lists_recent_changes_with_names(db, hr):
    db.save_employee(EmployeeRecord(id="E1", display_name="Ada"))
    db.save_employee(EmployeeRecord(id="E2", display_name="Bo"))
    db.save_work_history(WorkHistoryRecord(employee_id="E1", effective_date=date(2024, 1, 1), department="R&D"))
    db.save_work_history(WorkHistoryRecord(employee_id="E1", effective_date=date(2023, 5, 1), department="Sales"))
    db.save_work_history(WorkHistoryRecord(employee_id="E2", effective_date=date(2023, 12, 1), job_title="Lead"))
    db.save_work_history(WorkHistoryRecord(employee_id="E9", effective_date=date(2023, 11, 15)))

    mobility = hr.org_mobility(90)

    assert [(m["employee_id"], m["effective_date"]) for m in mobility] == [
        ("E1", "2024-01-01"),
        ("E2", "2023-12-01"),
        ("E9", "2023-11-15"),
    ]
    assert mobility[0]["employee_name"] == "Ada"
    assert mobility[0]["department"] == "R&D"
    assert mobility[1]["job_title"] == "Lead"
    assert mobility[2]["employee_name"] is None
    assert [m["employee_id"] for m in hr.org_mobility(45)] == ["E1", "E2"]


def test_tenure_and_upcoming_anniversaries(db, hr):
    db.save_employee(EmployeeRecord(id="E1", display_name="Ada", start_date=date(2020, 1, 20)))
    db.save_employee(EmployeeRecord(id="E2", display_name="Bo", start_date=date(2023, 6, 1)))
    db.save_employee(EmployeeRecord(id="E3", display_name="Cy", start_date=date(2024, 1, 5)))
    db.save_employee(EmployeeRecord(id="E6", display_name="Di", start_date=date(2021, 1, 10)))
    db.save_employee(EmployeeRecord(id="E7", display_name="Ed", start_date=date(2024, 2, 1)))
    db.save_employee(EmployeeRecord(id="E4", display_name="Ex", start_date=date(2019, 1, 12),
                                    employment_status="Terminated"))
    db.save_employee(EmployeeRecord(id="E5", display_name="No start"))

    result = hr.tenure()

    assert [(t["id"], t["tenure_years"]) for t in result["tenure"]] == [
        ("E1", 3.97),
        ("E6", 3.0),
        ("E2", 0.61),
        ("E3", 0.01),
    ]
    assert [(a["id"], a["years"], a["days_to_next_anniversary"]) for a in result["upcomingAnniversaries"]] == [
        ("E6", 3, 0),
        ("E1", 4, 10),
    ]
    assert result["upcomingAnniversaries"][1]["anniversary_date"] == "2024-01-20"


def test_next_anniversary():
    assert next_anniversary(date(2020, 1, 10), date(2024, 1, 10)) == date(2024, 1, 10)
    assert next_anniversary(date(2020, 1, 5), date(2024, 1, 10)) == date(2025, 1, 5)
    assert next_anniversary(date(2016, 2, 29), date(2023, 2, 20)) == date(2023, 2, 28)
    assert next_anniversary(date(2016, 2, 29), date(2024, 2, 20)) == date(2024, 2, 29)


def _seed_time_off(db):
    db.save_employee(EmployeeRecord(id="E1", display_name="Ada", department="R&D", site="Berlin"))
    db.save_employee(EmployeeRecord(id="E2", display_name="Bo", department="Sales"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E1", date=TODAY, policy_type="Holiday", request_id="R1"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E2", date=TODAY, policy_type="Holiday", request_id="R2"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E2", date=TODAY + timedelta(days=1),
                                              policy_type="Sick", request_id="R3"))
    db.save_time_off_entry(TimeOffEntryRecord(employee_id="E1", date=TODAY + timedelta(days=10),
                                              policy_type="Holiday", request_id="R4"))


def test_whos_out_defaults_to_the_next_week(db, hr):
    _seed_time_off(db)

    out = hr.whos_out()

    assert [(o["date"], o["employee_name"]) for o in out] == [
        ("2024-01-10", "Ada"),
        ("2024-01-10", "Bo"),
        ("2024-01-11", "Bo"),
    ]
    assert out[0]["site"] == "Berlin"
    assert out[0]["policy_type"] == "Holiday"


def test_whos_out_filters_by_department_and_range(db, hr):
    _seed_time_off(db)

    sales = hr.whos_out(TODAY, TODAY + timedelta(days=30), department="Sales")
    assert [(o["employee_id"], o["date"]) for o in sales] == [("E2", "2024-01-10"), ("E2", "2024-01-11")]

    later = hr.whos_out(TODAY + timedelta(days=5), TODAY + timedelta(days=15))
    assert [o["request_id"] for o in later] == ["R4"]


def test_time_off_calendar(db, hr):
    _seed_time_off(db)

    calendar = hr.time_off_calendar(TODAY, TODAY + timedelta(days=1))

    assert calendar == [
        {"date": "2024-01-10", "total_out": 2, "policy_types": ["Holiday"], "departments": ["R&D", "Sales"]},
        {"date": "2024-01-11", "total_out": 1, "policy_types": ["Sick"], "departments": ["Sales"]},
    ]
    assert [day["date"] for day in hr.time_off_calendar()] == ["2024-01-10", "2024-01-11", "2024-01-20"]


def test_reports(db, hr):
    db.save_report_data(ReportRecord(report_name="Headcount export", generated_at=datetime(2024, 1, 2),
                                     rows=[{"Department": "R&D", "Count": "3"}]))
    db.save_report_data(ReportRecord(report_name="Engagement Survey Q4", generated_at=datetime(2024, 1, 9),
                                     metadata={"responseRate": 80.0}))

    assert [r["report_name"] for r in hr.list_reports()] == ["Engagement Survey Q4", "Headcount export"]

    report = hr.get_report("Headcount export")
    assert report["rows"] == [{"Department": "R&D", "Count": "3"}]
    assert report["metadata"] == {}
    assert report["generated_at"] == "2024-01-02T00:00:00"
    assert hr.get_report("Missing") is None


def test_hr_detail_reads_raise_query_failure_when_store_is_gone(db, queries):
    Base.metadata.drop_all(bind=db.engine)

    with pytest.raises(QueryFailure) as excinfo:
        queries.get_tenure()
    assert excinfo.value.operation == "get_tenure"

    with pytest.raises(QueryFailure):
        queries.get_time_off_calendar(TODAY, TODAY)
