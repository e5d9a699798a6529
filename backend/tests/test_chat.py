from datetime import datetime, timezone

import pytest

from app.domain import chat
from app.errors import EmptyContent, InvalidState, PermissionDenied
from app.models.chat import ChatMessage

NOW = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def make_message(**overrides):
    values = dict(
        id=1,
        session_id=1,
        sender_id=100,
        message="Is the midterm open book?",
        type="text",
        is_private=False,
        is_edited=False,
        is_deleted=False,
        reactions=[],
        read_receipts=[],
    )
    values.update(overrides)
    return ChatMessage(**values)


def test_clean_content():
    assert chat.clean_content("  hello ") == "hello"
    with pytest.raises(EmptyContent):
        chat.clean_content("   ")
    with pytest.raises(EmptyContent):
        chat.clean_content(None)


def test_edit_keeps_first_original():
    message = make_message()
    chat.edit(message, 100, "Is the final open book?", NOW)
    chat.edit(message, 100, "Is the final closed book?", NOW)
    assert message.message == "Is the final closed book?"
    assert message.original_message == "Is the midterm open book?"
    assert message.is_edited is True
    assert message.edited_at == NOW


def test_only_sender_can_edit_or_delete():
    message = make_message()
    with pytest.raises(PermissionDenied):
        chat.edit(message, 200, "hijacked", NOW)
    with pytest.raises(PermissionDenied):
        chat.soft_delete(message, 200, NOW)


def test_soft_delete():
    message = make_message()
    chat.soft_delete(message, 100, NOW)
    assert message.is_deleted is True
    assert message.deleted_by == 100
    with pytest.raises(InvalidState):
        chat.soft_delete(message, 100, NOW)
    with pytest.raises(InvalidState):
        chat.edit(message, 100, "too late", NOW)


def test_reactions_add_twice_remove_once():
    message = make_message()
    assert chat.add_reaction(message, 200, "👍", NOW) is True
    assert chat.add_reaction(message, 200, "👍", NOW) is False
    assert chat.add_reaction(message, 300, "👍", NOW) is True
    assert message.reaction_summary == {"👍": [200, 300]}

    assert chat.remove_reaction(message, 200, "👍", NOW) is True
    assert chat.remove_reaction(message, 200, "👍", NOW) is False
    assert message.reaction_summary == {"👍": [300]}

    chat.remove_reaction(message, 300, "👍", NOW)
    assert message.reaction_summary == {}


def test_reaction_requires_emoji():
    with pytest.raises(EmptyContent):
        chat.add_reaction(make_message(), 200, " ", NOW)


def test_mark_read_once_per_user():
    message = make_message()
    assert chat.mark_read(message, 200, NOW) is True
    assert chat.mark_read(message, 200, NOW) is False
    assert [r.user_id for r in message.read_receipts] == [200]


def test_private_visibility():
    message = make_message(is_private=True, target_user_id=200)
    assert chat.can_view(message, 100)
    assert chat.can_view(message, 200)
    assert not chat.can_view(message, 300)
    assert chat.can_view(make_message(), 300)
