from app.models.activity_log import ActivityLog
from app.models.student import Student
from app.models.user import User
from app.models.week import Week

__all__ = ["ActivityLog", "Student", "User", "Week"]
