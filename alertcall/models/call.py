"""Call attempt model and call status rules."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from sqlalchemy import DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class CallStatus(str, Enum):
    """Call status enumeration, using the provider's spelling."""

    INITIATED = "initiated"
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    FAILED = "failed"
    CANCELED = "canceled"
    CONFIRMED = "confirmed"


TERMINAL_STATUSES = frozenset({
    CallStatus.CONFIRMED,
    CallStatus.COMPLETED,
    CallStatus.NO_ANSWER,
    CallStatus.BUSY,
    CallStatus.FAILED,
    CallStatus.CANCELED,
})

# Statuses a provider status callback may carry
PROVIDER_STATUSES = frozenset({
    CallStatus.INITIATED,
    CallStatus.QUEUED,
    CallStatus.RINGING,
    CallStatus.IN_PROGRESS,
    CallStatus.COMPLETED,
    CallStatus.BUSY,
    CallStatus.NO_ANSWER,
    CallStatus.FAILED,
    CallStatus.CANCELED,
})

# Non-terminal statuses only ever move forward along this order
_PROGRESS_RANK = {
    CallStatus.INITIATED: 0,
    CallStatus.QUEUED: 1,
    CallStatus.RINGING: 2,
    CallStatus.IN_PROGRESS: 3,
}


def resolve_status_update(
    current: CallStatus,
    confirmed: bool,
    current_duration: Optional[int],
    new_status: CallStatus,
    duration: Optional[int] = None,
) -> Optional[Tuple[CallStatus, Optional[int]]]:
    """Decide what a status event does to an attempt.

    Returns the ``(status, duration)`` pair to store, or ``None`` when the
    event must not change anything. A confirmed attempt keeps its status
    and only picks up a duration it did not have yet. Terminal attempts
    never change. Non-terminal statuses never move backwards.
    """
    if confirmed:
        if duration is not None and current_duration is None:
            return current, duration
        return None

    if current in TERMINAL_STATUSES:
        return None

    if new_status in TERMINAL_STATUSES:
        return new_status, duration if duration is not None else current_duration

    if _PROGRESS_RANK.get(new_status, -1) <= _PROGRESS_RANK.get(current, -1):
        return None

    return new_status, duration if duration is not None else current_duration


class CallAttempt(Base):
    """A single call placed to one contact during one loop."""

    __tablename__ = "call_attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    # References
    alert_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("alerts.id", ondelete="CASCADE"),
        index=True
    )
    # Contacts may come from a file, so this is not a foreign key
    contact_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, index=True)
    contact_name: Mapped[Optional[str]] = mapped_column(String(255))
    phone: Mapped[str] = mapped_column(String(50))
    script: Mapped[Optional[str]] = mapped_column(Text)

    # Call state
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus),
        default=CallStatus.INITIATED,
        index=True
    )
    confirmed: Mapped[bool] = mapped_column(default=False)
    loop_number: Mapped[int] = mapped_column(Integer)
    attempt_number: Mapped[int] = mapped_column(Integer)

    # Provider details
    provider_call_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    duration: Mapped[Optional[int]] = mapped_column(Integer)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )

    # Relationships
    alert: Mapped["Alert"] = relationship(
        "Alert",
        back_populates="call_attempts"
    )

    def __repr__(self) -> str:
        return (
            f"<CallAttempt(id={self.id}, loop={self.loop_number}, "
            f"attempt={self.attempt_number}, status='{self.status}')>"
        )

    @property
    def is_terminal(self) -> bool:
        """Check if no further status change is expected."""
        return self.confirmed or self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        """Serialize using the persisted attempt schema."""
        return {
            "id": str(self.id),
            "alert_id": str(self.alert_id),
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "contact_name": self.contact_name,
            "phone": self.phone,
            "status": self.status.value if self.status else None,
            "confirmed": bool(self.confirmed),
            "attempt_number": self.attempt_number,
            "loop_number": self.loop_number,
            "provider_call_id": self.provider_call_id,
            "duration": self.duration,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
