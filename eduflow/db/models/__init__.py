# Import all models so SQLAlchemy metadata is fully populated on startup.
from eduflow.db.models.user import User
from eduflow.db.models.group import Group, GroupMember
from eduflow.db.models.classroom import ClassRoom, ClassMember
from eduflow.db.models.student import Student
from eduflow.db.models.form import Form, FormQuestion, FormTarget
from eduflow.db.models.form_instance import FormInstance, FormAnswer
from eduflow.db.models.report import Report
from eduflow.db.models.workflow_log import WorkflowLog
from eduflow.db.models.student_report import StudentReport
from eduflow.db.models.notification import Notification
from eduflow.db.models.invitation import Invitation


__all__ = [
    "User",
    "Group",
    "GroupMember",
    "ClassRoom",
    "ClassMember",
    "Student",
    "Form",
    "FormQuestion",
    "FormTarget",
    "FormInstance",
    "FormAnswer",
    "Report",
    "WorkflowLog",
    "StudentReport",
    "Notification",
    "Invitation",
]
