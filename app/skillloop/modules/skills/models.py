from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.skillloop.models import Base


class SkillCategory(Base):
    __tablename__ = "skill_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color_class: Mapped[str | None] = mapped_column(String(64), nullable=True)  # CSS badge class
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    skills: Mapped[list["Skill"]] = relationship("Skill", back_populates="category")


class Skill(Base):
    __tablename__ = "skills"
    __table_args__ = (Index("idx_skills_category", "category_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    category_id: Mapped[int] = mapped_column(ForeignKey("skill_categories.id", ondelete="RESTRICT"), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Subset of PROFICIENCY_LEVELS this skill is tracked at.
    proficiency_levels: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    category: Mapped[SkillCategory] = relationship("SkillCategory", back_populates="skills", lazy="joined")
    resources: Mapped[list["SkillResource"]] = relationship(
        "SkillResource",
        back_populates="skill",
        cascade="all, delete-orphan",
        order_by="SkillResource.rating.desc()",
    )


class SkillResource(Base):
    __tablename__ = "skill_resources"
    __table_args__ = (Index("idx_skill_resources_skill", "skill_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    skill_id: Mapped[int] = mapped_column(ForeignKey("skills.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(String(1024), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False, default="OTHER")
    level: Mapped[str | None] = mapped_column(String(32), nullable=True)  # target proficiency level
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)  # 0-5
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    skill: Mapped[Skill] = relationship("Skill", back_populates="resources")
