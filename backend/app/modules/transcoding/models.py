"""Persisted encoding jobs."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class JobState(str, Enum):
    """Steps of an encoding job, in execution order."""
    STARTED = "started"
    DOWNLOADING = "downloading"
    PROBING = "probing"
    THUMBNAILING = "thumbnailing"
    ENCODING = "encoding"
    UPLOADING = "uploading"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


TERMINAL_STATES = frozenset({JobState.DONE.value, JobState.FAILED.value})
ACTIVE_STATES = tuple(s.value for s in JobState if s.value not in TERMINAL_STATES)


class EncodingJob(Base):
    """One ingestion run for an episode.

    Every state transition is committed so that a worker restart can find
    and fail jobs it left behind.
    """

    __tablename__ = "encoding_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    movie_id: Mapped[int] = mapped_column(Integer, nullable=False)
    episode_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Storage key of the source video
    source: Mapped[str] = mapped_column(String(1024), nullable=False)
    callback_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    state: Mapped[str] = mapped_column(
        String(20), default=JobState.STARTED.value, nullable=False, index=True
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    worker_hostname: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_encoding_jobs_episode_state", "episode_id", "state"),
        # At most one live job per episode
        Index(
            "uq_encoding_jobs_active_episode",
            "episode_id",
            unique=True,
            postgresql_where=text("state NOT IN ('done', 'failed')"),
        ),
    )

    def __repr__(self) -> str:
        return f"<EncodingJob(id={self.id}, episode={self.episode_id}, state={self.state})>"

    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
