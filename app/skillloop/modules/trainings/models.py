from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.skillloop.models import Base

if TYPE_CHECKING:
    from app.skillloop.models import User
    from app.skillloop.modules.skills.models import Skill


class Training(Base):
    __tablename__ = "trainings"
    __table_args__ = (
        CheckConstraint("mode IN ('ONLINE', 'OFFLINE')", name="ck_trainings_mode"),
        Index("idx_trainings_skill", "skill_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    topic_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    duration_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    skill_id: Mapped[int | None] = mapped_column(ForeignKey("skills.id", ondelete="RESTRICT"), nullable=True)
    resources: Mapped[str | None] = mapped_column(Text, nullable=True)  # links / reading list, one per line
    venue: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    skill: Mapped["Skill | None"] = relationship("Skill", lazy="joined")
    created_by: Mapped["User | None"] = relationship("User", foreign_keys=[created_by_user_id])
    assignments: Mapped[list["TrainingAssignment"]] = relationship("TrainingAssignment", back_populates="training")
    calendar_entries: Mapped[list["TrainingCalendar"]] = relationship(
        "TrainingCalendar",
        back_populates="training",
        cascade="all, delete-orphan",
        order_by="TrainingCalendar.training_date",
    )


class TrainingAssignment(Base):
    __tablename__ = "training_assignments"
    __table_args__ = (
        CheckConstraint(
            "status IN ('ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_training_assignments_status",
        ),
        Index("idx_training_assignments_user_status", "user_id", "status"),
        Index("idx_training_assignments_training", "training_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="RESTRICT"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    trainer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    mentor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="ASSIGNED")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    target_completion_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    training: Mapped[Training] = relationship("Training", back_populates="assignments", lazy="joined")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])
    trainer: Mapped["User | None"] = relationship("User", foreign_keys=[trainer_id])
    mentor: Mapped["User | None"] = relationship("User", foreign_keys=[mentor_id])
    progress_updates: Mapped[list["ProgressUpdate"]] = relationship(
        "ProgressUpdate",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="ProgressUpdate.week_number",
    )
    proofs: Mapped[list["ProofOfCompletion"]] = relationship(
        "ProofOfCompletion",
        back_populates="assignment",
        cascade="all, delete-orphan",
        order_by="ProofOfCompletion.submitted_at.desc()",
    )
    feedback: Mapped["Feedback | None"] = relationship("Feedback", back_populates="assignment", uselist=False)


class TrainingCalendar(Base):
    __tablename__ = "training_calendar"
    __table_args__ = (Index("idx_training_calendar_date", "training_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    training_date: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    venue: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    training: Mapped[Training] = relationship("Training", back_populates="calendar_entries", lazy="joined")
    attendance: Mapped[list["Attendance"]] = relationship(
        "Attendance",
        back_populates="calendar",
        cascade="all, delete-orphan",
    )


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("calendar_id", "user_id", name="uq_attendance_calendar_user"),
        CheckConstraint("status IN ('PRESENT', 'ABSENT', 'LATE')", name="ck_attendance_status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    calendar_id: Mapped[int] = mapped_column(ForeignKey("training_calendar.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    marked_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    marked_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    calendar: Mapped[TrainingCalendar] = relationship("TrainingCalendar", back_populates="attendance")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])


class ProgressUpdate(Base):
    __tablename__ = "progress_updates"
    __table_args__ = (
        UniqueConstraint("assignment_id", "week_number", name="uq_progress_assignment_week"),
        CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_progress_completion_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey("training_assignments.id", ondelete="CASCADE"), nullable=False)
    week_number: Mapped[int] = mapped_column(Integer, nullable=False)
    completion_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    topics_covered: Mapped[str | None] = mapped_column(Text, nullable=True)
    hours_spent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    challenges: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_steps: Mapped[str | None] = mapped_column(Text, nullable=True)
    mentor_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    mentor_commented_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assignment: Mapped[TrainingAssignment] = relationship("TrainingAssignment", back_populates="progress_updates")


class ProofOfCompletion(Base):
    __tablename__ = "proofs_of_completion"
    __table_args__ = (
        CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_proofs_status"),
        Index("idx_proofs_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey("training_assignments.id", ondelete="CASCADE"), nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    original_filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    reviewer_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assignment: Mapped[TrainingAssignment] = relationship("TrainingAssignment", back_populates="proofs")
    reviewed_by: Mapped["User | None"] = relationship("User", foreign_keys=[reviewed_by_user_id])


class Feedback(Base):
    __tablename__ = "training_feedback"
    __table_args__ = (
        UniqueConstraint("assignment_id", name="uq_feedback_assignment"),
        CheckConstraint("overall_rating >= 1 AND overall_rating <= 5", name="ck_feedback_overall_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    assignment_id: Mapped[int] = mapped_column(ForeignKey("training_assignments.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    material_helpful: Mapped[int] = mapped_column(Integer, nullable=False)
    interactive_engaging: Mapped[int] = mapped_column(Integer, nullable=False)
    trainer_answered: Mapped[int] = mapped_column(Integer, nullable=False)
    content_satisfaction: Mapped[int] = mapped_column(Integer, nullable=False)
    overall_rating: Mapped[int] = mapped_column(Integer, nullable=False)
    # like_most, key_learnings, confusing_topics, quality_rating, competent_confident, suggestions
    extended: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    assignment: Mapped[TrainingAssignment] = relationship("TrainingAssignment", back_populates="feedback")
    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])
