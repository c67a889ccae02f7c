import enum
from datetime import datetime
from sqlalchemy import String, Integer, Enum, ForeignKey, Text, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow


class GroupRole(str, enum.Enum):
    OWNER = "owner"
    ADMIN = "admin"
    TEACHER = "teacher"
    TIME_TEACHER = "time_teacher"
    STUDENT = "student"


ROLE_LABELS = {
    GroupRole.OWNER: "소유자",
    GroupRole.ADMIN: "관리자",
    GroupRole.TEACHER: "선생님",
    GroupRole.TIME_TEACHER: "시간강사",
    GroupRole.STUDENT: "학생",
}


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User")
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")


class GroupMember(Base):
    __tablename__ = "group_members"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    role: Mapped[GroupRole] = mapped_column(Enum(GroupRole), index=True, default=GroupRole.STUDENT)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    group = relationship("Group", back_populates="members")
    user = relationship("User")

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.value)
