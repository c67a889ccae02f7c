import enum
from datetime import datetime
from sqlalchemy import String, Integer, Enum, ForeignKey, Text, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow


class ClassRole(str, enum.Enum):
    TEACHER = "teacher"
    TIME_TEACHER = "time_teacher"


class ClassRoom(Base):
    """A class (반) inside a group."""

    __tablename__ = "classes"
    __table_args__ = (UniqueConstraint("group_id", "name", name="uq_classes_group_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    members = relationship("ClassMember", back_populates="classroom", cascade="all, delete-orphan")


class ClassMember(Base):
    __tablename__ = "class_members"
    __table_args__ = (UniqueConstraint("class_id", "user_id", name="uq_class_members_class_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    class_id: Mapped[int] = mapped_column(ForeignKey("classes.id"), index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    role: Mapped[ClassRole] = mapped_column(Enum(ClassRole), index=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    classroom = relationship("ClassRoom", back_populates="members")
    user = relationship("User")
