"""Session lifecycle, roster and presence through the service layer."""

from datetime import timedelta

import pytest

from app.errors import (
    InvalidSchedule,
    InvalidState,
    NotEnrolled,
    PermissionDenied,
    ValidationFailed,
    WrongCollege,
)
from app.realtime.hub import RecordingBroadcaster
from app.services import monitoring_service, notification_service, session_service
from app.utils import utcnow


def test_create_session_with_roster(run, db, faculty, student, other_student):
    async def scenario():
        session = await session_service.create_session(
            db,
            faculty,
            title="Databases",
            subject="CS301",
            scheduled_start=utcnow() + timedelta(days=1),
            duration_minutes=90,
            session_settings={"allow_late_join": False, "enable_chat": None},
            student_ids=[student.id, other_student.id, student.id],
        )
        await db.commit()
        return session

    session = run(scenario())
    assert session.status == "scheduled"
    assert session.faculty_id == faculty.id
    assert session.college_id == faculty.college_id
    assert session.total_enrolled == 2
    assert session.settings["allow_late_join"] is False
    assert session.settings["enable_chat"] is True
    assert session.version == 1


def test_create_session_rejects_bad_input(run, db, faculty, other_faculty, student, outsider):
    start = utcnow() + timedelta(days=1)

    with pytest.raises(InvalidSchedule):
        run(session_service.create_session(db, faculty, "T", "S", start, duration_minutes=2))
    with pytest.raises(InvalidSchedule):
        run(session_service.create_session(db, faculty, "T", "S", start, scheduled_end=start - timedelta(hours=1)))
    with pytest.raises(WrongCollege):
        run(session_service.create_session(db, faculty, "T", "S", start, student_ids=[outsider.id]))
    with pytest.raises(PermissionDenied):
        run(session_service.create_session(db, faculty, "T", "S", start, faculty_id=other_faculty.id))
    with pytest.raises(PermissionDenied):
        run(session_service.create_session(db, student, "T", "S", start))


def test_admin_creates_session_for_faculty(run, db, admin, faculty):
    async def scenario():
        with pytest.raises(ValidationFailed):
            await session_service.create_session(db, admin, "T", "S", utcnow())
        return await session_service.create_session(db, admin, "T", "S", utcnow(), faculty_id=faculty.id)

    session = run(scenario())
    assert session.faculty_id == faculty.id


def test_lifecycle_broadcasts_and_notifies(run, db, faculty, student, scheduled_session):
    broadcaster = RecordingBroadcaster()

    async def scenario():
        for action in ("start", "pause", "resume", "end"):
            await session_service.transition(db, faculty, scheduled_session, action, broadcaster=broadcaster)
        await db.commit()
        session = await session_service.get_session(db, faculty, scheduled_session)
        notifications, total, unread = await notification_service.list_notifications(db, student.id)
        return session, notifications, total

    session, notifications, total = run(scenario())
    assert session.status == "ended"
    assert session.actual_end_time >= session.actual_start_time
    assert broadcaster.names() == ["session_start", "session_pause", "session_resume", "session_end"]
    assert broadcaster.last("session_end")["new_status"] == "ended"
    assert broadcaster.events[0][0] == f"session-{scheduled_session}"
    assert total == 2
    assert {n.type for n in notifications} == {"session_start", "session_end"}


def test_only_owner_or_admin_controls_lifecycle(run, db, other_faculty, student, admin, scheduled_session):
    with pytest.raises(PermissionDenied):
        run(session_service.start_session(db, other_faculty, scheduled_session))
    with pytest.raises(PermissionDenied):
        run(session_service.start_session(db, student, scheduled_session))
    assert run(session_service.start_session(db, admin, scheduled_session)).status == "live"


def test_unknown_action(run, db, faculty, scheduled_session):
    with pytest.raises(ValidationFailed):
        run(session_service.transition(db, faculty, scheduled_session, "explode"))


def test_live_session_cannot_be_deleted(run, db, faculty, live_session):
    with pytest.raises(InvalidState):
        run(session_service.delete_session(db, faculty, live_session))


def test_delete_scheduled_session_cancels_it(run, db, faculty, scheduled_session):
    session = run(session_service.delete_session(db, faculty, scheduled_session))
    assert session.status == "cancelled"
    with pytest.raises(InvalidState):
        run(session_service.start_session(db, faculty, scheduled_session))


def test_update_rejected_while_live(run, db, faculty, live_session):
    with pytest.raises(InvalidState):
        run(session_service.update_session(db, faculty, live_session, {"title": "New"}))


def test_update_settings(run, db, faculty, scheduled_session):
    session = run(
        session_service.update_session(
            db,
            faculty,
            scheduled_session,
            {"title": "Advanced Algorithms", "settings": {"max_concurrent_students": 1}},
        )
    )
    assert session.title == "Advanced Algorithms"
    assert session.max_concurrent_students == 1


def test_enroll_is_idempotent(run, db, faculty, student, other_student, scheduled_session):
    result = run(session_service.enroll_students(db, faculty, scheduled_session, [student.id, other_student.id]))
    assert result == {"enrolled": 0, "already_enrolled": 2, "total_enrolled": 2}


def test_enroll_rejects_other_college(run, db, faculty, outsider, scheduled_session):
    with pytest.raises(WrongCollege):
        run(session_service.enroll_students(db, faculty, scheduled_session, [outsider.id]))


def test_join_leave_and_end_keep_attendance_in_step(run, db, faculty, student, other_student, live_session):
    broadcaster = RecordingBroadcaster()

    async def scenario():
        joined = await session_service.join_session(db, student, live_session, broadcaster=broadcaster)
        await session_service.join_session(db, other_student, live_session, broadcaster=broadcaster)
        left = await session_service.leave_session(db, other_student, live_session, broadcaster=broadcaster)
        await db.commit()

        leaver = await monitoring_service.get_attendance(db, live_session, other_student.id)
        assert leaver.is_present is False
        assert leaver.status == "left"

        await session_service.end_session(db, faculty, live_session, broadcaster=broadcaster)
        await db.commit()
        stayer = await monitoring_service.get_attendance(db, live_session, student.id)
        roster = await session_service.list_roster(db, faculty, live_session)
        session = await session_service.get_session(db, faculty, live_session)
        return joined, left, stayer, roster, session

    joined, left, stayer, roster, session = run(scenario())
    assert joined["observer"] is False
    assert joined["present_count"] == 1
    assert left["present_count"] == 1
    assert stayer.is_present is False
    assert stayer.leave_time is not None
    assert stayer.status == "left"
    assert all(not row["is_present"] for row in roster)
    assert session.total_joined == 2
    assert session.max_concurrent_seen == 2
    assert broadcaster.names() == ["student_joined", "student_joined", "student_left", "session_end"]


def test_join_rules(run, db, faculty, student, outsider, scheduled_session):
    with pytest.raises(InvalidState):
        run(session_service.join_session(db, student, scheduled_session))
    with pytest.raises(NotEnrolled):
        run(session_service.join_session(db, outsider, scheduled_session))

    run(session_service.start_session(db, faculty, scheduled_session))
    observer = run(session_service.join_session(db, faculty, scheduled_session))
    assert observer["observer"] is True
    assert observer["present_count"] == 0


def test_list_sessions_is_scoped(run, db, faculty, other_faculty, student, outsider, admin, scheduled_session):
    def ids(actor):
        sessions, total = run(session_service.list_sessions(db, actor))
        return [s.id for s in sessions]

    assert ids(faculty) == [scheduled_session]
    assert ids(other_faculty) == []
    assert ids(student) == [scheduled_session]
    assert ids(outsider) == []
    assert ids(admin) == [scheduled_session]


def test_get_session_requires_participation(run, db, outsider, other_faculty, scheduled_session):
    with pytest.raises(NotEnrolled):
        run(session_service.get_session(db, outsider, scheduled_session))
    with pytest.raises(PermissionDenied):
        run(session_service.get_session(db, other_faculty, scheduled_session))
