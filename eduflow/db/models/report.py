import enum
from datetime import datetime
from sqlalchemy import Integer, ForeignKey, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow


class ReportStage(enum.IntEnum):
    AWAITING_STUDENT = 0
    AWAITING_TIME_TEACHER = 1
    AWAITING_TEACHER = 2
    COMPLETE = 3


STAGE_LABELS = {
    ReportStage.AWAITING_STUDENT: "학생 응답 대기",
    ReportStage.AWAITING_TIME_TEACHER: "시간강사 검토 대기",
    ReportStage.AWAITING_TEACHER: "선생님 검토 대기",
    ReportStage.COMPLETE: "완료",
}


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    form_instance_id: Mapped[int] = mapped_column(ForeignKey("form_instances.id"), unique=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), index=True)
    class_id: Mapped[int | None] = mapped_column(ForeignKey("classes.id"), nullable=True, index=True)

    # 0=awaiting student, 1=awaiting time-teacher, 2=awaiting teacher, 3=complete
    stage: Mapped[int] = mapped_column(Integer, default=0, index=True)

    time_teacher_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)
    teacher_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True, index=True)

    time_teacher_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_teacher_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    teacher_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    teacher_completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    rejected_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    final_report: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, index=True)

    form = relationship("Form")
    instance = relationship("FormInstance")
    student = relationship("Student")
