"""Session lifecycle state machine and roster transitions.

These functions only mutate the ``ClassSession`` they are given; loading and
saving it is the caller's job. Allowed transitions::

    scheduled -> live -> paused <-> live -> ended
    scheduled | paused -> cancelled
"""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from app.errors import InvalidSchedule, InvalidState, LateJoinRejected, NotEnrolled, SessionFull
from app.models.session import ClassSession, RosterEntry, SessionStatus, TERMINAL_STATUSES
from app.utils import round_half_up, to_utc

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 480


def validate_schedule(
    scheduled_start: datetime,
    scheduled_end: Optional[datetime],
    duration_minutes: int,
) -> None:
    fields = {}
    if scheduled_end is not None and to_utc(scheduled_end) <= to_utc(scheduled_start):
        fields["scheduled_end"] = "End time must be after start time"
    if duration_minutes < MIN_DURATION_MINUTES or duration_minutes > MAX_DURATION_MINUTES:
        fields["duration_minutes"] = (
            f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes"
        )
    if fields:
        raise InvalidSchedule("Invalid session schedule", fields=fields)


def present_count(session: ClassSession) -> int:
    return sum(1 for entry in session.roster if entry.is_present)


def recompute_analytics(session: ClassSession, now: datetime) -> None:
    """Refresh derived analytics; also bumps ``updated_at`` so the row version moves."""
    roster = list(session.roster)
    present = present_count(session)
    session.total_enrolled = len(roster)
    session.total_joined = sum(1 for entry in roster if entry.joined_at is not None)
    session.attendance_rate = int(round_half_up(100 * present / len(roster))) if roster else 0
    session.max_concurrent_seen = max(session.max_concurrent_seen or 0, present)
    session.updated_at = now


# ─── Lifecycle ────────────────────────────────────────────────────────────────

def start(session: ClassSession, now: datetime) -> None:
    if session.status == SessionStatus.LIVE.value:
        raise InvalidState("Session already live")
    if session.status in TERMINAL_STATUSES:
        raise InvalidState("Cannot start ended or cancelled session")
    session.status = SessionStatus.LIVE.value
    session.is_active = True
    if session.actual_start_time is None:
        session.actual_start_time = now


def pause(session: ClassSession) -> None:
    if session.status != SessionStatus.LIVE.value:
        raise InvalidState("Can only pause live sessions")
    session.status = SessionStatus.PAUSED.value


def resume(session: ClassSession) -> None:
    if session.status != SessionStatus.PAUSED.value:
        raise InvalidState("Can only resume paused sessions")
    session.status = SessionStatus.LIVE.value


def _check_out_present(session: ClassSession, now: datetime) -> List[int]:
    checked_out = []
    for entry in session.roster:
        if entry.is_present and entry.left_at is None:
            entry.left_at = now
            entry.is_present = False
            checked_out.append(entry.student_id)
    return checked_out


def end(session: ClassSession, now: datetime) -> List[int]:
    """End a live session and check out everyone still present.

    Returns the ids of the students that were force-checked-out.
    """
    if session.status != SessionStatus.LIVE.value:
        raise InvalidState("Session is not live")
    session.status = SessionStatus.ENDED.value
    session.is_active = False
    session.actual_end_time = now
    return _check_out_present(session, now)


def cancel(session: ClassSession, now: datetime) -> List[int]:
    """Cancel a scheduled or paused session.

    Ended sessions cannot be cancelled: ``actual_end_time`` is set exactly when
    the status is ended, and cancelling would break that.
    Students still marked present in a paused session are checked out.
    """
    if session.status == SessionStatus.LIVE.value:
        raise InvalidState("Cannot cancel a live session, end it first")
    if session.status in TERMINAL_STATUSES:
        raise InvalidState(f"Cannot cancel a {session.status} session")
    session.status = SessionStatus.CANCELLED.value
    session.is_active = False
    return _check_out_present(session, now)


# Every transition returns the ids of students it checked out.
TRANSITIONS = {
    "start": lambda session, now: start(session, now) or [],
    "pause": lambda session, now: pause(session) or [],
    "resume": lambda session, now: resume(session) or [],
    "end": end,
    "cancel": cancel,
}


# ─── Roster ───────────────────────────────────────────────────────────────────

def enroll(session: ClassSession, student_ids: Iterable[int], now: datetime) -> Tuple[int, int]:
    """Add students to the roster. Returns ``(enrolled, already_enrolled)``."""
    enrolled = 0
    already = 0
    seen = {entry.student_id for entry in session.roster}
    for student_id in student_ids:
        if student_id in seen:
            already += 1
            continue
        session.roster.append(RosterEntry(student_id=student_id, enrolled_at=now))
        seen.add(student_id)
        enrolled += 1
    return enrolled, already


def is_late(session: ClassSession, now: datetime) -> bool:
    if session.actual_start_time is None:
        return False
    cutoff = to_utc(session.actual_start_time) + timedelta(minutes=session.late_join_cutoff_minutes or 0)
    return now > cutoff


def join(
    session: ClassSession,
    student_id: int,
    now: datetime,
    *,
    bypass_enrollment: bool = False,
) -> Optional[RosterEntry]:
    """Mark a roster member present.

    Observers that bypass enrollment (admins) get ``None`` back: they are let in
    without becoming part of the roster.
    """
    entry = session.roster_entry(student_id)
    if entry is None and not bypass_enrollment:
        raise NotEnrolled()
    if session.status != SessionStatus.LIVE.value:
        raise InvalidState("Session is not live")
    if entry is None:
        return None

    if not entry.is_present:
        if is_late(session, now) and not session.allow_late_join:
            raise LateJoinRejected(
                f"Late join is not allowed more than {session.late_join_cutoff_minutes} minutes after start"
            )
        if session.max_concurrent_students and present_count(session) >= session.max_concurrent_students:
            raise SessionFull()

    if entry.joined_at is None:
        entry.joined_at = now
    entry.is_present = True
    entry.left_at = None
    entry.last_activity = now
    session.max_concurrent_seen = max(session.max_concurrent_seen or 0, present_count(session))
    return entry


def leave(session: ClassSession, student_id: int, now: datetime) -> RosterEntry:
    entry = session.roster_entry(student_id)
    if entry is None:
        raise NotEnrolled()
    entry.left_at = now
    entry.is_present = False
    entry.last_activity = now
    return entry
