"""Activity, location, alerts and reads against the database."""

import pytest

from app.errors import (
    AlertNotFound,
    AttendanceNotFound,
    InvalidCoordinate,
    NotEnrolled,
    PermissionDenied,
    ValidationFailed,
)
from app.realtime.hub import RecordingBroadcaster
from app.services import monitoring_service, notification_service, session_service


@pytest.fixture
def joined(run, db, student, live_session):
    run(session_service.join_session(db, student, live_session))
    run(db.commit())
    return live_session


def _report(run, db, actor, session_id, *activities, **kwargs):
    for activity in activities:
        run(monitoring_service.record_activity(db, actor, session_id, activity, **kwargs))
    run(db.commit())


def test_activity_updates_scores_and_notifies_owner(run, db, student, faculty, joined):
    broadcaster = RecordingBroadcaster()

    async def scenario():
        for _ in range(3):
            await monitoring_service.record_activity(db, student, joined, "tab_switch", broadcaster=broadcaster)
        attendance, alerts = await monitoring_service.record_activity(
            db,
            student,
            joined,
            "screenshot_attempt",
            {"message": "PrintScreen pressed"},
            device_info={"browser": "Firefox"},
            broadcaster=broadcaster,
        )
        await db.commit()
        notifications, total, unread = await notification_service.list_notifications(db, faculty.id)
        return attendance, alerts, notifications

    attendance, alerts, notifications = run(scenario())
    assert attendance.behavior_score == 74
    assert attendance.risk_level == "medium"
    assert attendance.device_info == {"browser": "Firefox"}
    assert alerts[0].severity == "high"
    assert [n.type for n in notifications] == ["alert_generated"]
    assert notifications[0].data["alert_id"] == alerts[0].id

    event = broadcaster.last("student_activity")
    assert event["student_id"] == student.id
    assert event["calculated"]["behavior_score"] == 74
    assert len(broadcaster.events) == 4


def test_unknown_activity_is_ignored(run, db, student, joined):
    broadcaster = RecordingBroadcaster()
    attendance, alerts = run(
        monitoring_service.record_activity(db, student, joined, "juggling", broadcaster=broadcaster)
    )
    assert alerts is None
    assert attendance.alerts == []
    assert broadcaster.events == []


def test_activity_needs_an_attendance_record(run, db, other_student, live_session):
    with pytest.raises(AttendanceNotFound):
        run(monitoring_service.record_activity(db, other_student, live_session, "tab_switch"))


def test_students_report_only_for_themselves(run, db, student, other_student, faculty, joined):
    with pytest.raises(PermissionDenied):
        run(monitoring_service.record_activity(db, student, joined, "tab_switch", student_id=other_student.id))
    with pytest.raises(ValidationFailed):
        run(monitoring_service.record_activity(db, faculty, joined, "tab_switch"))
    attendance, alerts = run(
        monitoring_service.record_activity(db, faculty, joined, "suspicious_activity", "Second face", student_id=student.id)
    )
    assert attendance.status == "suspicious"


def test_location_updates(run, db, student, outsider, live_session):
    async def scenario():
        first, first_alert = await monitoring_service.update_location(db, student, live_session, 12.9716, 77.5946, "Campus")
        second, second_alert = await monitoring_service.update_location(db, student, live_session, 13.0827, 80.2707)
        await db.commit()
        return first_alert, second, second_alert

    first_alert, attendance, alert = run(scenario())
    assert first_alert is None
    assert alert.severity == "high"
    assert alert.extra["distance_km"] > 1
    assert attendance.location["latitude"] == 13.0827
    assert attendance.location_verified is True

    with pytest.raises(InvalidCoordinate):
        run(monitoring_service.update_location(db, student, live_session, 90.0001, 0))
    with pytest.raises(NotEnrolled):
        run(monitoring_service.update_location(db, outsider, live_session, 0, 0))


def test_alert_listing_and_statistics(run, db, student, faculty, joined):
    _report(run, db, student, joined, "tab_switch", "tab_switch", "app_switch", "window_focus_loss")

    result = run(monitoring_service.get_alerts(db, faculty, joined))
    assert result["total"] == 4
    assert result["statistics"]["by_severity"] == {"low": 1, "medium": 2, "high": 1, "critical": 0}
    assert result["statistics"]["unresolved"] == 4
    assert result["alerts"][0]["student"]["id"] == student.id

    high_only = run(monitoring_service.get_alerts(db, faculty, joined, severity="high"))
    assert high_only["total"] == 1
    assert high_only["alerts"][0]["type"] == "app_switch"

    run(monitoring_service.resolve_alert(db, faculty, joined, student.id, high_only["alerts"][0]["id"], "Warned"))
    run(db.commit())
    resolved = run(monitoring_service.get_alerts(db, faculty, joined, resolved=True))
    assert resolved["total"] == 1
    assert resolved["statistics"]["unresolved"] == 3

    with pytest.raises(AlertNotFound):
        run(monitoring_service.resolve_alert(db, faculty, joined, student.id, 9999))


def test_manual_alert(run, db, student, faculty, joined):
    broadcaster = RecordingBroadcaster()
    alert = run(
        monitoring_service.add_alert(
            db, faculty, joined, student.id, "recording_attempt", "Caught on camera", broadcaster=broadcaster
        )
    )
    assert alert.severity == "critical"
    assert broadcaster.last("monitoring_alert")["alert"]["id"] == alert.id

    with pytest.raises(ValidationFailed):
        run(monitoring_service.add_alert(db, faculty, joined, student.id, "daydreaming"))
    with pytest.raises(PermissionDenied):
        run(monitoring_service.add_alert(db, student, joined, student.id, "tab_switch"))


def test_dashboard_is_for_managers_only(run, db, student, faculty, other_faculty, admin, joined):
    _report(run, db, student, joined, "recording_attempt")

    dashboard = run(monitoring_service.get_monitoring_dashboard(db, faculty, joined))
    assert dashboard["summary"] == {"total": 1, "present": 1, "high_risk": 1, "unresolved_alerts": 1}
    assert dashboard["students"][0]["student"]["name"] == student.full_name
    assert run(monitoring_service.get_monitoring_dashboard(db, admin, joined))["session"]["id"] == joined

    for actor in (student, other_faculty):
        with pytest.raises(PermissionDenied):
            run(monitoring_service.get_monitoring_dashboard(db, actor, joined))


def test_attendance_summary(run, db, student, faculty, joined):
    empty_summary = run(monitoring_service.get_attendance_summary(db, faculty, joined))
    assert empty_summary["total_students"] == 1

    _report(run, db, student, joined, "tab_switch", "tab_switch", "tab_switch", "screenshot_attempt")
    summary = run(monitoring_service.get_attendance_summary(db, faculty, joined))
    assert summary["total_students"] == 1
    assert summary["present_students"] == 1
    assert summary["attendance_rate"] == 100.0
    assert summary["total_alerts"] == 4
    assert summary["average_behavior_score"] == 74.0
    assert summary["average_engagement"] == 50.0


def test_summary_of_session_without_attendance(run, db, faculty, scheduled_session):
    summary = run(monitoring_service.get_attendance_summary(db, faculty, scheduled_session))
    assert summary == {
        "total_students": 0,
        "present_students": 0,
        "attendance_rate": 0,
        "average_duration": 0,
        "total_alerts": 0,
        "average_behavior_score": 100,
        "average_engagement": 0,
    }


def test_engagement_and_history(run, db, student, other_student, faculty, other_faculty, joined):
    attendance = run(monitoring_service.update_engagement(db, joined, student.id, "question", 2))
    run(db.commit())
    assert attendance.questions_asked == 2
    assert attendance.participation_score == 56

    mine = run(monitoring_service.get_student_history(db, student, student.id))
    assert [row["session"]["id"] for row in mine] == [joined]
    assert run(monitoring_service.get_student_history(db, other_faculty, student.id)) == []
    assert len(run(monitoring_service.get_student_history(db, faculty, student.id))) == 1
    with pytest.raises(PermissionDenied):
        run(monitoring_service.get_student_history(db, other_student, student.id))


def test_student_reads_only_own_attendance(run, db, student, other_student, faculty, joined):
    view = run(monitoring_service.get_student_attendance(db, student, joined, student.id))
    assert view["is_present"] is True
    assert view["alerts"] == []
    with pytest.raises(PermissionDenied):
        run(monitoring_service.get_student_attendance(db, other_student, joined, student.id))
    assert run(monitoring_service.get_student_attendance(db, faculty, joined, student.id))["student_id"] == student.id
