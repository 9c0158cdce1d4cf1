from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mediacompose.models.base import Base, TimestampMixin, UTCDateTime


class CompositionStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (CompositionStatus.COMPLETED, CompositionStatus.FAILED)

    def can_transition_to(self, target: "CompositionStatus") -> bool:
        """Forward-only: same state or later, never out of a terminal state."""
        if self.is_terminal:
            return target is self
        return target.rank >= self.rank


_STATUS_ORDER = [
    CompositionStatus.PENDING,
    CompositionStatus.IN_PROGRESS,
    CompositionStatus.COMPLETED,
    CompositionStatus.FAILED,
]


class VideoComposition(Base, TimestampMixin):
    __tablename__ = "video_compositions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Status: pending, in_progress, completed, failed
    status: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Append-only step log; duplicates are meaningful
    steps: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Scratch directory owned by this composition
    folder_path: Mapped[str] = mapped_column(Text, nullable=False)

    # Output (cleared by the cleanup sweep once expired)
    video_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    expiration_time: Mapped[datetime | None] = mapped_column(
        UTCDateTime(), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<VideoComposition {self.id} ({self.status})>"
