from datetime import datetime
from sqlalchemy import Integer, ForeignKey, String, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from eduflow.db.base import Base, utcnow

class StudentReport(Base):
    """Raw answer dump and its AI (or locally) summarised draft."""

    __tablename__ = "student_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_instance_id: Mapped[int] = mapped_column(ForeignKey("form_instances.id"), unique=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id"), index=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), index=True)

    raw_report: Mapped[str] = mapped_column(Text, default="")
    ai_report: Mapped[str] = mapped_column(Text, default="")
    source: Mapped[str] = mapped_column(String(20), default="fallback")  # gemini | fallback

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
