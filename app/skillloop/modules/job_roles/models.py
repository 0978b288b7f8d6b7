from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.skillloop.models import Base

if TYPE_CHECKING:
    from app.skillloop.modules.skills.models import Skill


class JobRole(Base):
    __tablename__ = "job_roles"
    __table_args__ = (
        Index("idx_job_roles_department", "department"),
        CheckConstraint("level IN ('ENTRY', 'MID', 'SENIOR', 'LEAD')", name="ck_job_roles_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="ENTRY")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    competencies: Mapped[list["RoleCompetency"]] = relationship(
        "RoleCompetency",
        back_populates="job_role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class RoleCompetency(Base):
    __tablename__ = "role_competencies"
    __table_args__ = (
        UniqueConstraint("job_role_id", "skill_id", name="uq_role_competency_role_skill"),
        CheckConstraint("priority IN ('REQUIRED', 'PREFERRED', 'OPTIONAL')", name="ck_role_competencies_priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    job_role_id: Mapped[int] = mapped_column(ForeignKey("job_roles.id", ondelete="CASCADE"), nullable=False)
    skill_id: Mapped[int] = mapped_column(ForeignKey("skills.id", ondelete="RESTRICT"), nullable=False)
    required_level: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="REQUIRED")

    job_role: Mapped[JobRole] = relationship("JobRole", back_populates="competencies")
    skill: Mapped["Skill"] = relationship("Skill", lazy="joined")
