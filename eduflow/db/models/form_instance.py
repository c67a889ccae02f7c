import enum
from datetime import datetime
from sqlalchemy import Integer, Enum, ForeignKey, Text, Float, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow


class InstanceStatus(str, enum.Enum):
    PENDING = "pending"
    STUDENT_COMPLETED = "student_completed"
    TIME_TEACHER_COMPLETED = "time_teacher_completed"
    TEACHER_COMPLETED = "teacher_completed"


class FormInstance(Base):
    """Per-student instantiation of a form; holds the submitted answers."""

    __tablename__ = "form_instances"
    __table_args__ = (UniqueConstraint("form_id", "student_id", name="uq_form_instances_form_student"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), index=True)
    class_id: Mapped[int | None] = mapped_column(ForeignKey("classes.id"), nullable=True, index=True)

    status: Mapped[InstanceStatus] = mapped_column(Enum(InstanceStatus), index=True, default=InstanceStatus.PENDING)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    class_average: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    form = relationship("Form")
    student = relationship("Student")
    answers = relationship("FormAnswer", back_populates="instance", cascade="all, delete-orphan")


class FormAnswer(Base):
    __tablename__ = "form_answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_instance_id: Mapped[int] = mapped_column(ForeignKey("form_instances.id"), index=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("form_questions.id"), index=True)

    text_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    number_response: Mapped[float | None] = mapped_column(Float, nullable=True)
    rating_response: Mapped[int | None] = mapped_column(Integer, nullable=True)

    instance = relationship("FormInstance", back_populates="answers")
    question = relationship("FormQuestion")
