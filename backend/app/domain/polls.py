"""Poll rules: definition checks, vote/revote semantics, results and visibility."""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.errors import (
    AlreadyClosed,
    AlreadyResponded,
    AlreadyVoted,
    EmptyContent,
    InvalidOption,
    InvalidPoll,
    InvalidState,
    PollExpired,
    PollInactive,
)
from app.models.poll import Poll, PollResponse, PollType, ShowResults
from app.utils import round2, to_utc

YES_NO_OPTIONS = ["Yes", "No"]
RATING_OPTIONS = ["1", "2", "3", "4", "5"]


def normalize_options(poll_type: str, options: Optional[Sequence[Any]]) -> List[str]:
    """Clean the option texts of a new poll, filling defaults where the type has them."""
    if poll_type not in {t.value for t in PollType}:
        raise InvalidPoll(fields={"type": f"Unknown poll type '{poll_type}'"})
    if poll_type == PollType.TEXT_RESPONSE.value:
        return []

    texts = []
    for option in options or []:
        text = option.get("text") if isinstance(option, dict) else option
        text = str(text or "").strip()
        if text:
            texts.append(text)

    if not texts and poll_type == PollType.YES_NO.value:
        texts = list(YES_NO_OPTIONS)
    elif not texts and poll_type == PollType.RATING.value:
        texts = list(RATING_OPTIONS)

    if len(texts) < 2:
        raise InvalidPoll(
            "Choice polls need at least two options",
            fields={"options": "At least 2 options are required"},
        )
    if len(texts) > settings.POLL_MAX_OPTIONS:
        raise InvalidPoll(fields={"options": f"At most {settings.POLL_MAX_OPTIONS} options are allowed"})
    return texts


def is_expired(poll: Poll, now: datetime) -> bool:
    # A poll expiring exactly now still accepts votes.
    return poll.expires_at is not None and to_utc(poll.expires_at) < now


def expire_if_due(poll: Poll, now: datetime) -> bool:
    """Close an active poll whose deadline passed. Returns True when it changed."""
    if poll.is_active and is_expired(poll, now):
        poll.is_active = False
        poll.closed_at = to_utc(poll.expires_at)
        poll.updated_at = now
        return True
    return False


def ensure_open(poll: Poll, now: datetime) -> None:
    if not poll.is_active:
        raise PollInactive()
    if is_expired(poll, now):
        raise PollExpired()


def find_response(poll: Poll, user_id: int) -> Optional[PollResponse]:
    return next((r for r in poll.responses if r.user_id == user_id), None)


def apply_vote(
    poll: Poll,
    user_id: int,
    now: datetime,
    *,
    option_index: Optional[int] = None,
    text: Optional[str] = None,
    response_time: Optional[float] = None,
) -> PollResponse:
    """Record one user's vote or text answer on ``poll``.

    A user has at most one response row per poll. A revote rewrites that row in
    place, which moves the user from their old option to the new one.
    """
    ensure_open(poll, now)
    existing = find_response(poll, user_id)

    if poll.type == PollType.TEXT_RESPONSE.value:
        text = (text or "").strip()
        if not text:
            raise EmptyContent("Text response is required", fields={"text": "must not be empty"})
        if existing is not None and not poll.allow_change_vote:
            raise AlreadyResponded()
    else:
        if option_index is None or not 0 <= option_index < len(poll.options or []):
            raise InvalidOption(fields={"option_index": f"must be between 0 and {len(poll.options or []) - 1}"})
        if existing is not None and not poll.allow_change_vote:
            raise AlreadyVoted()

    if existing is None and poll.max_responses and len(poll.responses) >= poll.max_responses:
        raise InvalidState("Poll has reached its maximum number of responses")

    response = existing
    if response is None:
        response = PollResponse(user_id=user_id)
        poll.responses.append(response)

    if poll.type == PollType.TEXT_RESPONSE.value:
        response.text = text
        response.option_index = None
    else:
        response.option_index = option_index
        response.text = None
    response.response_time = response_time
    response.submitted_at = now

    recompute_results(poll, now)
    return response


def recompute_results(poll: Poll, now: datetime) -> None:
    responses = list(poll.responses)
    poll.total_votes = sum(1 for r in responses if r.option_index is not None)
    poll.total_text_responses = sum(1 for r in responses if r.text is not None)
    timings = [r.response_time for r in responses if r.response_time is not None]
    poll.average_response_time = round2(sum(timings) / len(timings)) if timings else 0
    poll.updated_at = now


def option_counts(poll: Poll) -> List[int]:
    counts = [0] * len(poll.options or [])
    for response in poll.responses:
        if response.option_index is not None and response.option_index < len(counts):
            counts[response.option_index] += 1
    return counts


def close(poll: Poll, now: datetime) -> None:
    if not poll.is_active:
        raise AlreadyClosed()
    poll.is_active = False
    poll.closed_at = now
    poll.updated_at = now


# ─── Views ────────────────────────────────────────────────────────────────────

def aggregate(poll: Poll) -> Dict[str, Any]:
    """Full counts, as pushed to the session room after each vote."""
    counts = option_counts(poll)
    return {
        "poll_id": poll.id,
        "options": [{"text": text, "votes": counts[i]} for i, text in enumerate(poll.options or [])],
        "total_votes": poll.total_votes,
        "total_responses": poll.total_text_responses,
    }


def can_see_results(poll: Poll, has_voted: bool) -> bool:
    if poll.show_results == ShowResults.REAL_TIME.value:
        return True
    if poll.show_results == ShowResults.AFTER_VOTE.value:
        return has_voted
    if poll.show_results == ShowResults.AFTER_CLOSE.value:
        return not poll.is_active
    return False


def _base_view(poll: Poll) -> Dict[str, Any]:
    return {
        "id": poll.id,
        "session_id": poll.session_id,
        "created_by": poll.created_by,
        "question": poll.question,
        "type": poll.type,
        "settings": poll.settings,
        "is_active": poll.is_active,
        "is_anonymous": poll.is_anonymous,
        "expires_at": poll.expires_at,
        "closed_at": poll.closed_at,
        "created_at": poll.created_at,
    }


def student_view(poll: Poll, user_id: int) -> Dict[str, Any]:
    """What one student is allowed to see of a poll."""
    mine = find_response(poll, user_id)
    has_voted = mine is not None
    visible = can_see_results(poll, has_voted)
    counts = option_counts(poll)

    view = _base_view(poll)
    view["has_voted"] = has_voted
    view["options"] = [
        {
            "index": i,
            "text": text,
            "votes": counts[i] if visible else 0,
            "has_voted": mine is not None and mine.option_index == i,
        }
        for i, text in enumerate(poll.options or [])
    ]
    view["results"] = poll.results if visible else None
    view["my_response"] = (
        {"option_index": mine.option_index, "text": mine.text, "submitted_at": mine.submitted_at}
        if mine is not None
        else None
    )
    return view


def manager_view(poll: Poll) -> Dict[str, Any]:
    """Faculty/admin detail. Voter identity is withheld for anonymous polls."""
    counts = option_counts(poll)
    view = _base_view(poll)
    options = []
    for i, text in enumerate(poll.options or []):
        option: Dict[str, Any] = {"index": i, "text": text, "votes": counts[i]}
        if not poll.is_anonymous:
            option["voters"] = [
                {"user_id": r.user_id, "voted_at": r.submitted_at, "response_time": r.response_time}
                for r in poll.responses
                if r.option_index == i
            ]
        options.append(option)
    view["options"] = options
    view["text_responses"] = [
        {
            "user_id": None if poll.is_anonymous else r.user_id,
            "response": r.text,
            "submitted_at": r.submitted_at,
        }
        for r in poll.responses
        if r.text is not None
    ]
    view["results"] = poll.results
    return view
