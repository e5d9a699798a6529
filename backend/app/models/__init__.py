from app.models.college import College
from app.models.user import User
from app.models.session import ClassSession, RosterEntry
from app.models.attendance import Attendance, AttendanceAlert
from app.models.poll import Poll, PollResponse
from app.models.chat import ChatMessage, ChatReaction, ChatReadReceipt
from app.models.notification import Notification
