"""Inbound WebSocket message dispatch: acks, error frames and room events."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api import realtime
from app.api.realtime import dispatch
from app.realtime.hub import RecordingBroadcaster, RoomClient
from app.services import poll_service, session_service
from app.utils import utcnow


class FakeSocket:
    async def send_json(self, data):
        return None


@pytest.fixture
def send(run, session_factory):
    broadcaster = RecordingBroadcaster()

    def _send(user, session_id, payload):
        client = RoomClient(FakeSocket(), user)
        return run(dispatch(client, session_id, payload, broadcaster, session_factory=session_factory))

    _send.broadcaster = broadcaster
    return _send


def test_malformed_and_unknown_messages(send, student, live_session):
    assert send(student, live_session, ["not", "an", "object"])["error"] == "validation_failed"
    assert send(student, live_session, {"type": "ping"}) == {"type": "pong"}
    assert send(student, live_session, {"type": "teleport"}) == {
        "type": "error",
        "error": "validation_failed",
        "detail": "Unsupported message type",
    }


def test_join_and_leave_over_socket(send, student, live_session):
    joined = send(student, live_session, {"type": "join_session"})
    assert joined["type"] == "join_session_ack"
    assert joined["data"]["present_count"] == 1

    left = send(student, live_session, {"type": "leave_session"})
    assert left["data"]["present_count"] == 0
    assert send.broadcaster.names() == ["student_joined", "student_left"]


def test_domain_errors_become_error_frames(send, student, faculty, scheduled_session):
    frame = send(student, scheduled_session, {"type": "join_session"})
    assert frame == {"type": "error", "error": "invalid_state", "detail": "Session is not live"}

    frame = send(student, scheduled_session, {"type": "session_control", "action": "start"})
    assert frame["error"] == "permission_denied"

    frame = send(faculty, scheduled_session, {"type": "session_control", "action": "start"})
    assert frame["type"] == "session_control_ack"
    assert frame["data"]["status"] == "live"


def test_payload_fields_are_validated(send, student, live_session):
    send(student, live_session, {"type": "join_session"})

    frame = send(student, live_session, {"type": "student_activity"})
    assert frame["fields"] == {"activity_type": "is required"}

    frame = send(student, live_session, {"type": "location_update", "latitude": "north", "longitude": 1})
    assert frame["fields"] == {"latitude": "must be a number"}

    frame = send(student, live_session, {"type": "location_update", "latitude": 91, "longitude": 1})
    assert frame["error"] == "invalid_coordinate"


def test_activity_and_location_acks(send, student, live_session):
    send(student, live_session, {"type": "join_session"})

    frame = send(student, live_session, {"type": "student_activity", "activity_type": "tab_switch"})
    assert frame["data"]["recognized"] is True
    assert frame["data"]["alerts"][0]["severity"] == "medium"

    frame = send(student, live_session, {"type": "student_activity", "activity_type": "juggling"})
    assert frame["data"]["recognized"] is False

    frame = send(student, live_session, {"type": "location_update", "latitude": 12.97, "longitude": 77.59})
    assert frame["data"]["alert"] is None
    assert frame["data"]["location"]["latitude"] == 12.97


def test_vote_checks_the_poll_belongs_to_the_room(run, session_factory, send, faculty, student, live_session):
    async def create_poll():
        async with session_factory() as db:
            poll = await poll_service.create_poll(db, faculty, live_session, "Ready?", "yes_no")
            other = await session_service.create_session(
                db, faculty, "Other", "CS", utcnow(), student_ids=[student.id]
            )
            await db.commit()
            return poll.id, other.id

    poll_id, other_session = run(create_poll())

    frame = send(student, other_session, {"type": "poll_vote", "poll_id": poll_id, "option_index": 0})
    assert frame["fields"] == {"poll_id": "belongs to another session"}

    frame = send(student, live_session, {"type": "poll_vote", "poll_id": poll_id, "option_index": 0})
    assert frame["type"] == "poll_vote_ack"
    assert frame["data"]["results"]["options"][0]["votes"] == 1

    frame = send(student, live_session, {"type": "poll_vote", "poll_id": poll_id, "option_index": 1})
    assert frame["error"] == "already_voted"


def test_chat_round_trip(send, student, other_student, live_session):
    sent = send(student, live_session, {"type": "send_message", "message": "Hello class"})
    message_id = sent["data"]["id"]

    reacted = send(other_student, live_session, {"type": "add_reaction", "message_id": message_id, "emoji": "👋"})
    assert reacted["data"]["reactions"] == {"👋": [other_student.id]}

    read = send(other_student, live_session, {"type": "mark_read", "message_id": message_id})
    assert read["data"]["read_by"] == [other_student.id]

    edited = send(student, live_session, {"type": "edit_message", "message_id": message_id, "message": "Hello, class"})
    assert edited["data"]["message"] == "Hello, class"

    forbidden = send(other_student, live_session, {"type": "delete_message", "message_id": message_id})
    assert forbidden["error"] == "permission_denied"

    deleted = send(student, live_session, {"type": "delete_message", "message_id": message_id})
    assert deleted["data"] == {"message_id": message_id}
    assert send.broadcaster.names() == [
        "chat_message",
        "chat_reaction_added",
        "chat_message_edited",
        "chat_message_deleted",
    ]


def test_unexpected_failures_are_reported_generically(monkeypatch, send, student, live_session):
    async def broken(db, user, session_id, payload, broadcaster):
        raise RuntimeError("database on fire")

    monkeypatch.setitem(realtime.HANDLERS, "send_message", broken)
    frame = send(student, live_session, {"type": "send_message", "message": "hi"})
    assert frame == {"type": "error", "error": "internal_error", "detail": "Unable to process message"}


def test_events_go_out_after_the_commit(run, engine, student, live_session):
    log = []

    class LoggedSession(AsyncSession):
        async def commit(self):
            await super().commit()
            log.append("commit")

    class LoggedBroadcaster(RecordingBroadcaster):
        async def publish(self, room, event, payload):
            log.append(event)
            await super().publish(room, event, payload)

    factory = async_sessionmaker(bind=engine, class_=LoggedSession, expire_on_commit=False, autoflush=False)
    client = RoomClient(FakeSocket(), student)

    frame = run(dispatch(client, live_session, {"type": "join_session"}, LoggedBroadcaster(), session_factory=factory))
    assert frame["type"] == "join_session_ack"
    assert log == ["commit", "student_joined"]


def test_events_of_a_failed_message_are_dropped(monkeypatch, send, student, live_session):
    async def publishes_then_fails(db, user, session_id, payload, broadcaster):
        await broadcaster.publish(f"session-{session_id}", "chat_message", {"id": 1})
        raise RuntimeError("write failed")

    monkeypatch.setitem(realtime.HANDLERS, "send_message", publishes_then_fails)
    frame = send(student, live_session, {"type": "send_message", "message": "hi"})
    assert frame["error"] == "internal_error"
    assert send.broadcaster.events == []


def test_private_message_is_delivered_to_its_target(send, faculty, student, other_student, live_session):
    frame = send(
        faculty,
        live_session,
        {"type": "send_message", "message": "Stay after class", "is_private": True, "target_user_id": student.id},
    )
    assert frame["type"] == "send_message_ack"
    assert send.broadcaster.received_by(student.id) == ["chat_message"]
    assert send.broadcaster.received_by(other_student.id) == []
