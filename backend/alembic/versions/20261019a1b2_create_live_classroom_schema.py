"""Create live classroom schema.

Revision ID: 20261019a1b2
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019a1b2"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "colleges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_colleges_name", "colleges", ["name"], unique=True)
    op.create_index("ix_colleges_code", "colleges", ["code"], unique=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "FACULTY", "STUDENT", name="userrole"), nullable=False),
        sa.Column("college_id", sa.Integer(), sa.ForeignKey("colleges.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("student_id", sa.String(length=50), nullable=True, unique=True),
        sa.Column("department", sa.String(length=100), nullable=True),
        sa.Column("profile_picture", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_college_id", "users", ["college_id"])
    op.create_index("ix_users_college_role", "users", ["college_id", "role"])

    op.create_table(
        "class_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("subject", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("faculty_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("college_id", sa.Integer(), sa.ForeignKey("colleges.id", ondelete="SET NULL"), nullable=True),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("allow_late_join", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("late_join_cutoff_minutes", sa.Integer(), nullable=False, server_default="15"),
        sa.Column("require_location_verification", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_chat", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_polls", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_screen_share", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_recording", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("max_concurrent_students", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("total_enrolled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_joined", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_concurrent_seen", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("attendance_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_polls", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_class_sessions_faculty_id", "class_sessions", ["faculty_id"])
    op.create_index("ix_class_sessions_college_id", "class_sessions", ["college_id"])
    op.create_index("ix_class_sessions_status", "class_sessions", ["status"])
    op.create_index("ix_sessions_faculty_start", "class_sessions", ["faculty_id", "scheduled_start"])
    op.create_index("ix_sessions_college_status", "class_sessions", ["college_id", "status"])

    op.create_table(
        "session_roster",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("left_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_present", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("participation_score", sa.Float(), nullable=False, server_default="0"),
        sa.UniqueConstraint("session_id", "student_id", name="uq_roster_session_student"),
    )
    op.create_index("ix_session_roster_session_id", "session_roster", ["session_id"])
    op.create_index("ix_session_roster_student_id", "session_roster", ["student_id"])

    op.create_table(
        "attendance",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.String(length=300), nullable=True),
        sa.Column("accuracy", sa.Float(), nullable=True),
        sa.Column("location_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("join_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("leave_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_duration", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_present", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tab_switches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("app_switches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_focus_loss", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("inactive_time", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("screenshot_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("recording_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("polls_participated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("questions_asked", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reactions_given", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("participation_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("disconnections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reconnections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("network_quality_score", sa.Float(), nullable=False, server_default="100"),
        sa.Column("network_info", sa.JSON(), nullable=True),
        sa.Column("device_info", sa.JSON(), nullable=True),
        sa.Column("behavior_score", sa.Float(), nullable=False, server_default="100"),
        sa.Column("engagement_level", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("risk_level", sa.String(length=20), nullable=False, server_default="low"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="joined"),
        sa.Column("last_activity", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("session_id", "student_id", name="uq_attendance_session_student"),
    )
    op.create_index("ix_attendance_session_id", "attendance", ["session_id"])
    op.create_index("ix_attendance_student_id", "attendance", ["student_id"])
    op.create_index("ix_attendance_status", "attendance", ["status"])
    op.create_index("ix_attendance_session_present", "attendance", ["session_id", "is_present"])
    op.create_index("ix_attendance_status_activity", "attendance", ["status", "last_activity"])

    op.create_table(
        "attendance_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("attendance_id", sa.Integer(), sa.ForeignKey("attendance.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("severity", sa.String(length=20), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("extra", sa.JSON(), nullable=True),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_attendance_alerts_attendance_id", "attendance_alerts", ["attendance_id"])
    op.create_index("ix_attendance_alerts_type", "attendance_alerts", ["type"])
    op.create_index("ix_attendance_alerts_severity", "attendance_alerts", ["severity"])

    op.create_table(
        "polls",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("question", sa.String(length=500), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False),
        sa.Column("options", sa.JSON(), nullable=False),
        sa.Column("allow_change_vote", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_results", sa.String(length=20), nullable=False, server_default="after_vote"),
        sa.Column("require_login", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("time_limit", sa.Integer(), nullable=True),
        sa.Column("max_responses", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_votes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_text_responses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_response_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_polls_session_id", "polls", ["session_id"])
    op.create_index("ix_polls_created_by", "polls", ["created_by"])
    op.create_index("ix_polls_is_active", "polls", ["is_active"])
    op.create_index("ix_polls_session_created", "polls", ["session_id", "created_at"])
    op.create_index("ix_polls_active_expires", "polls", ["is_active", "expires_at"])

    op.create_table(
        "poll_responses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("poll_id", sa.Integer(), sa.ForeignKey("polls.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("option_index", sa.Integer(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("response_time", sa.Float(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("poll_id", "user_id", name="uq_poll_response_user"),
    )
    op.create_index("ix_poll_responses_poll_id", "poll_responses", ["poll_id"])
    op.create_index("ix_poll_responses_user_id", "poll_responses", ["user_id"])

    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("class_sessions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=30), nullable=False, server_default="text"),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("target_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reply_to_id", sa.Integer(), sa.ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_edited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("edited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("original_message", sa.Text(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_chat_messages_session_id", "chat_messages", ["session_id"])
    op.create_index("ix_chat_messages_sender_id", "chat_messages", ["sender_id"])
    op.create_index("ix_chat_messages_reply_to_id", "chat_messages", ["reply_to_id"])
    op.create_index("ix_chat_messages_timestamp", "chat_messages", ["timestamp"])
    op.create_index("ix_chat_session_deleted_time", "chat_messages", ["session_id", "is_deleted", "timestamp"])

    op.create_table(
        "chat_reactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("emoji", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("message_id", "emoji", "user_id", name="uq_reaction_message_emoji_user"),
    )
    op.create_index("ix_chat_reactions_message_id", "chat_reactions", ["message_id"])

    op.create_table(
        "chat_read_receipts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("message_id", sa.Integer(), sa.ForeignKey("chat_messages.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("message_id", "user_id", name="uq_read_receipt_message_user"),
    )
    op.create_index("ix_chat_read_receipts_message_id", "chat_read_receipts", ["message_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("recipient_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.String(length=1000), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_recipient_read", "notifications", ["recipient_id", "is_read", "created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("chat_read_receipts")
    op.drop_table("chat_reactions")
    op.drop_table("chat_messages")
    op.drop_table("poll_responses")
    op.drop_table("polls")
    op.drop_table("attendance_alerts")
    op.drop_table("attendance")
    op.drop_table("session_roster")
    op.drop_table("class_sessions")
    op.drop_table("users")
    op.drop_table("colleges")
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
