"""Alert model for incoming critical events."""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class Alert(Base):
    """A critical event that must be acknowledged by a human."""

    __tablename__ = "alerts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        index=True
    )

    # Source identification, used to skip events we have already stored
    source_message_id: Mapped[str] = mapped_column(String(500), unique=True, index=True)

    # Alert content
    sender: Mapped[str] = mapped_column(String(500))
    subject: Mapped[str] = mapped_column(String(500))
    body_preview: Mapped[Optional[str]] = mapped_column(Text)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)

    # Escalation result
    processed: Mapped[bool] = mapped_column(default=False, index=True)
    confirmed: Mapped[bool] = mapped_column(default=False)
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processing_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True
    )

    # Relationships
    call_attempts: Mapped[List["CallAttempt"]] = relationship(
        "CallAttempt",
        back_populates="alert",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Alert(id={self.id}, subject='{self.subject}', processed={self.processed})>"

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "source_message_id": self.source_message_id,
            "sender": self.sender,
            "subject": self.subject,
            "received_at": self.received_at.isoformat() if self.received_at else None,
            "processed": bool(self.processed),
            "confirmed": bool(self.confirmed),
            "processing_started_at": (
                self.processing_started_at.isoformat() if self.processing_started_at else None
            ),
            "processing_completed_at": (
                self.processing_completed_at.isoformat() if self.processing_completed_at else None
            ),
        }
