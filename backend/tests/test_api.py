"""End-to-end HTTP flows through the FastAPI app."""

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import get_db
from app.main import app
from app.realtime.hub import RecordingBroadcaster
from app.utils import utcnow


def _create_session(client, headers, student_ids, **overrides):
    body = {
        "title": "Operating Systems",
        "subject": "CS310",
        "scheduled_start": (utcnow() + timedelta(hours=1)).isoformat(),
        "duration_minutes": 60,
        "student_ids": student_ids,
    }
    body.update(overrides)
    return client.post("/api/v1/sessions", json=body, headers=headers)


def test_health(client):
    assert client.get("/").json()["status"] == "online"
    assert client.get("/api/v1/health").json()["status"] == "healthy"


def test_authentication_required(client, student, auth_headers):
    assert client.get("/api/v1/sessions").status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get("/api/v1/sessions", headers=bad).status_code == 401
    assert client.get("/api/v1/users/me", headers=auth_headers(student)).json()["username"] == "ada"


def test_session_lifecycle_over_http(client, broadcaster, faculty, student, auth_headers):
    instructor, learner = auth_headers(faculty), auth_headers(student)

    created = _create_session(client, instructor, [student.id], settings={"allow_late_join": False})
    assert created.status_code == 201
    session = created.json()
    assert session["status"] == "scheduled"
    assert session["settings"]["allow_late_join"] is False
    assert session["analytics"]["total_enrolled"] == 1

    sid = session["id"]
    assert _create_session(client, learner, []).status_code == 403

    started = client.post(f"/api/v1/sessions/{sid}/start", headers=instructor)
    assert started.status_code == 200
    assert started.json()["status"] == "live"
    assert started.json()["actual_start_time"] is not None

    joined = client.post(f"/api/v1/sessions/{sid}/join", headers=learner)
    assert joined.status_code == 200
    assert joined.json()["present_count"] == 1

    roster = client.get(f"/api/v1/sessions/{sid}/roster", headers=instructor).json()
    assert roster[0]["student_id"] == student.id
    assert roster[0]["is_present"] is True

    ended = client.post(f"/api/v1/sessions/{sid}/end", headers=instructor)
    assert ended.json()["status"] == "ended"

    attendance = client.get(f"/api/v1/attendance/sessions/{sid}/students/{student.id}", headers=learner).json()
    assert attendance["is_present"] is False
    assert attendance["status"] == "left"

    assert broadcaster.names() == ["session_start", "student_joined", "session_end"]


def test_domain_errors_use_the_error_format(client, faculty, student, auth_headers, live_session):
    instructor = auth_headers(faculty)

    response = client.post(f"/api/v1/sessions/{live_session}/start", headers=instructor)
    assert response.status_code == 409
    assert response.json() == {"error": "invalid_state", "detail": "Session already live"}

    response = client.post(f"/api/v1/sessions/{live_session}/explode", headers=instructor)
    assert response.status_code == 422
    assert response.json()["fields"] == {"action": "Unknown action 'explode'"}

    response = client.get("/api/v1/sessions/9999", headers=instructor)
    assert response.status_code == 404
    assert response.json()["error"] == "session_not_found"

    response = _create_session(client, instructor, [], duration_minutes=1)
    assert response.status_code == 422
    assert response.json()["error"] == "invalid_schedule"
    assert "duration_minutes" in response.json()["fields"]


def test_poll_flow_over_http(client, broadcaster, faculty, student, other_student, auth_headers, live_session):
    instructor = auth_headers(faculty)

    created = client.post(
        f"/api/v1/polls/sessions/{live_session}",
        json={"question": "Favourite scheduler?", "options": ["FIFO", "Round robin", "CFS"]},
        headers=instructor,
    )
    assert created.status_code == 201
    poll_id = created.json()["id"]

    vote = client.post(f"/api/v1/polls/{poll_id}/vote", json={"option_index": 2}, headers=auth_headers(student))
    assert vote.status_code == 200
    assert vote.json()["results"]["options"][2]["votes"] == 1

    again = client.post(f"/api/v1/polls/{poll_id}/vote", json={"option_index": 0}, headers=auth_headers(student))
    assert again.status_code == 409
    assert again.json()["error"] == "already_voted"

    out_of_range = client.post(f"/api/v1/polls/{poll_id}/vote", json={"option_index": 3}, headers=auth_headers(other_student))
    assert out_of_range.status_code == 422
    assert out_of_range.json()["error"] == "invalid_option"

    unseen = client.get(f"/api/v1/polls/{poll_id}", headers=auth_headers(other_student)).json()
    assert unseen["results"] is None
    assert [o["votes"] for o in unseen["options"]] == [0, 0, 0]

    closed = client.post(f"/api/v1/polls/{poll_id}/close", headers=instructor)
    assert closed.status_code == 200
    assert closed.json()["results"]["total_votes"] == 1
    assert client.post(f"/api/v1/polls/{poll_id}/close", headers=instructor).json()["error"] == "already_closed"

    listed = client.get(f"/api/v1/polls/sessions/{live_session}", headers=instructor).json()
    assert listed["total"] == 1
    assert broadcaster.names() == ["new_poll", "poll_updated", "poll_closed"]


def test_chat_over_http(client, broadcaster, faculty, student, other_student, auth_headers, live_session):
    learner = auth_headers(student)

    sent = client.post(
        f"/api/v1/chat/sessions/{live_session}/messages",
        json={"message": "Is paging covered?"},
        headers=learner,
    )
    assert sent.status_code == 201
    message_id = sent.json()["id"]

    empty = client.post(f"/api/v1/chat/sessions/{live_session}/messages", json={"message": " "}, headers=learner)
    assert empty.status_code == 422
    assert empty.json()["error"] == "empty_content"

    reacted = client.post(
        f"/api/v1/chat/messages/{message_id}/reactions",
        json={"emoji": "👍"},
        headers=auth_headers(other_student),
    )
    assert reacted.json()["reactions"] == {"👍": [other_student.id]}

    removed = client.delete(f"/api/v1/chat/messages/{message_id}/reactions/👍", headers=auth_headers(other_student))
    assert removed.json()["reactions"] == {}

    forbidden = client.patch(
        f"/api/v1/chat/messages/{message_id}", json={"message": "edited"}, headers=auth_headers(other_student)
    )
    assert forbidden.status_code == 403

    history = client.get(f"/api/v1/chat/sessions/{live_session}/messages", headers=auth_headers(faculty)).json()
    assert history["count"] == 1
    assert history["messages"][0]["message"] == "Is paging covered?"
    assert broadcaster.names() == ["chat_message", "chat_reaction_added", "chat_reaction_removed"]


def test_monitoring_over_http(client, faculty, student, auth_headers, live_session):
    learner, instructor = auth_headers(student), auth_headers(faculty)
    client.post(f"/api/v1/sessions/{live_session}/join", headers=learner)

    for activity in ("tab_switch", "tab_switch", "tab_switch", "screenshot_attempt"):
        response = client.post(
            f"/api/v1/attendance/sessions/{live_session}/activity",
            json={"activity_type": activity},
            headers=learner,
        )
        assert response.status_code == 200

    dashboard = client.get(f"/api/v1/attendance/sessions/{live_session}/dashboard", headers=instructor)
    assert dashboard.status_code == 200
    row = dashboard.json()["students"][0]
    assert row["calculated"] == {"behavior_score": 74, "engagement_level": "medium", "risk_level": "medium"}

    assert client.get(f"/api/v1/attendance/sessions/{live_session}/dashboard", headers=learner).status_code == 403

    location = client.post(
        f"/api/v1/attendance/sessions/{live_session}/location",
        json={"latitude": 90.0001, "longitude": 0},
        headers=learner,
    )
    assert location.status_code == 422

    alerts = client.get(f"/api/v1/attendance/sessions/{live_session}/alerts", headers=instructor).json()
    assert alerts["statistics"]["by_severity"]["high"] == 1

    notifications = client.get("/api/v1/notifications", headers=instructor).json()
    assert notifications["unread"] == 1
    assert client.post("/api/v1/notifications/read-all", headers=instructor).json() == {"updated": 1}


def test_events_are_published_after_the_request_commits(client, engine, faculty, auth_headers, scheduled_session):
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

    async def logged_get_db():
        async with factory() as session:
            yield session
            await session.commit()

    app.dependency_overrides[get_db] = logged_get_db
    app.state.broadcaster = LoggedBroadcaster()
    instructor = auth_headers(faculty)

    assert client.post(f"/api/v1/sessions/{scheduled_session}/start", headers=instructor).status_code == 200
    assert log[:2] == ["commit", "session_start"]

    assert client.post(f"/api/v1/sessions/{scheduled_session}/start", headers=instructor).status_code == 409
    assert log.count("session_start") == 1
