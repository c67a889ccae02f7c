import enum
from datetime import datetime, timedelta
from sqlalchemy import String, Integer, Enum, ForeignKey, Text, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship
from eduflow.db.base import Base, utcnow
from eduflow.db.models.group import GroupRole

INVITATION_TTL = timedelta(hours=24)


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


def default_expiry() -> datetime:
    return utcnow() + INVITATION_TTL


class Invitation(Base):
    __tablename__ = "invitations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), index=True)
    inviter_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    invitee_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    email: Mapped[str] = mapped_column(String(200), index=True)
    role: Mapped[GroupRole] = mapped_column(Enum(GroupRole), default=GroupRole.STUDENT)
    message: Mapped[str] = mapped_column(Text, default="")

    status: Mapped[InvitationStatus] = mapped_column(
        Enum(InvitationStatus), index=True, default=InvitationStatus.PENDING
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, default=default_expiry, index=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    group = relationship("Group")
    inviter = relationship("User", foreign_keys=[inviter_id])
    invitee = relationship("User", foreign_keys=[invitee_id])
