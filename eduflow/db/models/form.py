import enum
from datetime import datetime
from sqlalchemy import String, Integer, Enum, ForeignKey, Text, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow


class QuestionType(str, enum.Enum):
    TEXT = "text"
    NUMBER = "number"
    RATING = "rating"


class TargetType(str, enum.Enum):
    CLASS = "class"
    STUDENT = "student"


class Form(Base):
    """Form template (평가지). Sending it creates one FormInstance per student."""

    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), index=True)
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    title: Mapped[str] = mapped_column(String(200), index=True)
    description: Mapped[str] = mapped_column(Text, default="")

    is_sent: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    questions = relationship(
        "FormQuestion",
        back_populates="form",
        cascade="all, delete-orphan",
        order_by="FormQuestion.order_index",
    )
    targets = relationship("FormTarget", cascade="all, delete-orphan")


class FormQuestion(Base):
    __tablename__ = "form_questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    order_index: Mapped[int] = mapped_column(Integer, default=0)

    question_text: Mapped[str] = mapped_column(Text)
    question_type: Mapped[QuestionType] = mapped_column(Enum(QuestionType), default=QuestionType.TEXT)
    is_required: Mapped[bool] = mapped_column(Boolean, default=False)
    rating_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # the number question used for class averages
    is_score: Mapped[bool] = mapped_column(Boolean, default=False)

    form = relationship("Form", back_populates="questions")


class FormTarget(Base):
    __tablename__ = "form_targets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)
    target_type: Mapped[TargetType] = mapped_column(Enum(TargetType))
    target_id: Mapped[int] = mapped_column(Integer, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
