from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.skillloop.models import Base

if TYPE_CHECKING:
    from app.skillloop.models import User
    from app.skillloop.modules.assessments.models import Assessment
    from app.skillloop.modules.trainings.models import TrainingAssignment


class Journey(Base):
    __tablename__ = "journeys"
    __table_args__ = (
        CheckConstraint("status IN ('IN_PROGRESS', 'PAUSED', 'COMPLETED')", name="ck_journeys_status"),
        CheckConstraint("employee_type IN ('NEW_EMPLOYEE', 'EXISTING_EMPLOYEE')", name="ck_journeys_employee_type"),
        Index("idx_journeys_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    employee_type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="IN_PROGRESS")
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User", foreign_keys=[user_id])
    phases: Mapped[list["JourneyPhase"]] = relationship(
        "JourneyPhase",
        back_populates="journey",
        cascade="all, delete-orphan",
        order_by="JourneyPhase.phase_number",
        lazy="selectin",
    )
    activities: Mapped[list["JourneyActivity"]] = relationship(
        "JourneyActivity",
        back_populates="journey",
        cascade="all, delete-orphan",
        order_by="JourneyActivity.created_at.desc()",
    )


class JourneyPhase(Base):
    __tablename__ = "journey_phases"
    __table_args__ = (
        CheckConstraint(
            "status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED', 'OVERDUE', 'SKIPPED')",
            name="ck_journey_phases_status",
        ),
        CheckConstraint("duration_days >= 1", name="ck_journey_phases_duration"),
        Index("idx_journey_phases_status_due", "status", "due_date"),
        Index("idx_journey_phases_mentor", "mentor_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    journey_id: Mapped[int] = mapped_column(ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    phase_type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="NOT_STARTED")
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    mentor_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assessment_id: Mapped[int | None] = mapped_column(ForeignKey("assessments.id", ondelete="SET NULL"), nullable=True)
    training_assignment_id: Mapped[int | None] = mapped_column(
        ForeignKey("training_assignments.id", ondelete="SET NULL"), nullable=True
    )

    journey: Mapped[Journey] = relationship("Journey", back_populates="phases")
    mentor: Mapped["User | None"] = relationship("User", foreign_keys=[mentor_id])
    assessment: Mapped["Assessment | None"] = relationship("Assessment")
    training_assignment: Mapped["TrainingAssignment | None"] = relationship("TrainingAssignment")


class JourneyActivity(Base):
    __tablename__ = "journey_activities"
    __table_args__ = (Index("idx_journey_activities_journey_created", "journey_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    journey_id: Mapped[int] = mapped_column(ForeignKey("journeys.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)  # e.g. PHASE_STARTED
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    phase_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    journey: Mapped[Journey] = relationship("Journey", back_populates="activities")
