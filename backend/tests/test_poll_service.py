from datetime import timedelta

import pytest

from app.errors import (
    AlreadyVoted,
    FeatureDisabled,
    InvalidPoll,
    NotEnrolled,
    PermissionDenied,
    PollExpired,
    PollInactive,
    ValidationFailed,
)
from app.realtime.hub import RecordingBroadcaster
from app.services import monitoring_service, notification_service, poll_service, session_service
from app.utils import utcnow


def _create(run, db, actor, session_id, **kwargs):
    values = dict(question="Which sort is stable?", type="single_choice", options=["Quicksort", "Mergesort", "Heapsort"])
    values.update(kwargs)
    poll = run(poll_service.create_poll(db, actor, session_id, **values))
    run(db.commit())
    return poll


def test_create_poll_notifies_and_broadcasts(run, db, faculty, student, live_session):
    broadcaster = RecordingBroadcaster()
    poll = _create(run, db, faculty, live_session, show_results="real_time", broadcaster=broadcaster)

    assert poll.is_active is True
    assert poll.options == ["Quicksort", "Mergesort", "Heapsort"]
    assert broadcaster.last("new_poll")["poll_id"] == poll.id

    session = run(session_service.get_session(db, faculty, live_session))
    assert session.total_polls == 1
    notifications, total, unread = run(notification_service.list_notifications(db, student.id))
    assert "poll_created" in {n.type for n in notifications}


def test_create_poll_validation(run, db, faculty, student, live_session):
    with pytest.raises(PermissionDenied):
        run(poll_service.create_poll(db, student, live_session, "Q?", "yes_no"))
    with pytest.raises(InvalidPoll):
        run(poll_service.create_poll(db, faculty, live_session, "Q?", "single_choice", ["Only"]))
    with pytest.raises(ValidationFailed):
        run(poll_service.create_poll(db, faculty, live_session, "  ", "yes_no"))
    with pytest.raises(ValidationFailed):
        run(poll_service.create_poll(db, faculty, live_session, "Q?", "yes_no", show_results="sometimes"))


def test_polls_disabled(run, db, faculty, scheduled_session):
    run(session_service.update_session(db, faculty, scheduled_session, {"settings": {"enable_polls": False}}))
    with pytest.raises(FeatureDisabled):
        run(poll_service.create_poll(db, faculty, scheduled_session, "Q?", "yes_no"))


def test_vote_flow(run, db, faculty, student, other_student, outsider, live_session):
    broadcaster = RecordingBroadcaster()
    run(session_service.join_session(db, student, live_session))
    poll = _create(run, db, faculty, live_session)

    first = run(poll_service.vote(db, student, poll.id, option_index=1, response_time=3.5, broadcaster=broadcaster))
    run(poll_service.vote(db, other_student, poll.id, option_index=1, broadcaster=broadcaster))
    run(db.commit())

    assert first["revote"] is False
    assert first["results"]["options"][1]["votes"] == 1
    assert broadcaster.last("poll_updated")["options"][1] == {"text": "Mergesort", "votes": 2}

    with pytest.raises(AlreadyVoted):
        run(poll_service.vote(db, student, poll.id, option_index=0))
    with pytest.raises(NotEnrolled):
        run(poll_service.vote(db, outsider, poll.id, option_index=0))

    attendance = run(monitoring_service.get_attendance(db, live_session, student.id))
    assert attendance.polls_participated == 1
    assert attendance.participation_score == 55


def test_revote_moves_counts(run, db, faculty, student, live_session):
    poll = _create(run, db, faculty, live_session, allow_change_vote=True)
    run(poll_service.vote(db, student, poll.id, option_index=0))
    second = run(poll_service.vote(db, student, poll.id, option_index=2))
    assert second["revote"] is True
    assert [o["votes"] for o in second["results"]["options"]] == [0, 0, 1]


def test_results_hidden_until_close(run, db, faculty, student, live_session):
    poll = _create(run, db, faculty, live_session, show_results="after_close")
    vote = run(poll_service.vote(db, student, poll.id, option_index=0))
    run(db.commit())
    assert vote["results"] is None

    view = run(poll_service.get_poll(db, student, poll.id))
    assert view["has_voted"] is True
    assert view["results"] is None

    broadcaster = RecordingBroadcaster()
    closed = run(poll_service.close_poll(db, faculty, poll.id, broadcaster=broadcaster))
    run(db.commit())
    assert closed.is_active is False
    assert broadcaster.last("poll_closed")["results"]["total_votes"] == 1

    view = run(poll_service.get_poll(db, student, poll.id))
    assert [o["votes"] for o in view["options"]] == [1, 0, 0]
    with pytest.raises(PollInactive):
        run(poll_service.vote(db, student, poll.id, option_index=1))


def test_expired_poll_is_closed_on_read(run, db, faculty, student, live_session):
    poll = _create(run, db, faculty, live_session, expires_in=5)

    async def backdate():
        fresh = await poll_service.load_poll(db, poll.id)
        fresh.expires_at = utcnow() - timedelta(seconds=1)
        await db.commit()

    run(backdate())
    with pytest.raises(PollExpired):
        run(poll_service.vote(db, student, poll.id, option_index=0))
    # The failed vote leaves the row alone; closing happens on the next read.
    assert run(poll_service.load_poll(db, poll.id)).is_active is True

    views, total = run(poll_service.list_polls(db, faculty, live_session))
    run(db.commit())
    assert total == 1
    assert views[0]["is_active"] is False
    assert views[0]["closed_at"] is not None


def test_manager_sees_voters_unless_anonymous(run, db, faculty, student, live_session):
    named = _create(run, db, faculty, live_session)
    anonymous = _create(run, db, faculty, live_session, is_anonymous=True)
    for poll in (named, anonymous):
        run(poll_service.vote(db, student, poll.id, option_index=0))
    run(db.commit())

    assert run(poll_service.get_poll(db, faculty, named.id))["options"][0]["voters"][0]["user_id"] == student.id
    assert "voters" not in run(poll_service.get_poll(db, faculty, anonymous.id))["options"][0]


def test_delete_poll(run, db, faculty, student, live_session):
    poll = _create(run, db, faculty, live_session)
    with pytest.raises(PermissionDenied):
        run(poll_service.delete_poll(db, student, poll.id))
    run(poll_service.delete_poll(db, faculty, poll.id))
    run(db.commit())
    views, total = run(poll_service.list_polls(db, faculty, live_session))
    assert total == 0
