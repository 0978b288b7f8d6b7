from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.skillloop.models import Base

if TYPE_CHECKING:
    from app.skillloop.models import User
    from app.skillloop.modules.skills.models import Skill


class SkillMatrixEntry(Base):
    __tablename__ = "skill_matrix"
    __table_args__ = (
        UniqueConstraint("user_id", "skill_id", name="uq_skill_matrix_user_skill"),
        Index("idx_skill_matrix_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    skill_id: Mapped[int] = mapped_column(ForeignKey("skills.id", ondelete="RESTRICT"), nullable=False)
    desired_level: Mapped[str] = mapped_column(String(32), nullable=False)
    current_level: Mapped[str | None] = mapped_column(String(32), nullable=True)  # None = not assessed
    gap_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # not_started, gap_identified, training_assigned, completed, personal_goal
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="not_started")
    last_assessed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    user: Mapped["User"] = relationship("User")
    skill: Mapped["Skill"] = relationship("Skill", lazy="joined")
