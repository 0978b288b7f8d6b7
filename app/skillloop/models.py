from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

if TYPE_CHECKING:
    from app.skillloop.modules.job_roles.models import JobRole


class Base(DeclarativeBase):
    pass


class UserRole(Base):
    __tablename__ = "user_roles"
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)


class RolePermission(Base):
    __tablename__ = "role_permissions"
    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id: Mapped[int] = mapped_column(ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_department", "department"),
        Index("idx_users_manager", "manager_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    employee_no: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    # Optional: most people sign in with OTP or a magic link.
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    designation: Mapped[str | None] = mapped_column(String(255), nullable=True)
    department: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)  # 1-10
    date_of_joining: Mapped[date | None] = mapped_column(Date, nullable=True)

    manager_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    job_role_id: Mapped[int | None] = mapped_column(ForeignKey("job_roles.id", ondelete="SET NULL"), nullable=True)

    # Journey state mirrored on the user for quick dashboard reads.
    employee_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # NEW_EMPLOYEE, EXISTING_EMPLOYEE
    journey_status: Mapped[str] = mapped_column(String(32), nullable=False, default="NOT_STARTED")
    current_phase_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    induction_start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    email_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list["Role"]] = relationship(
        secondary="user_roles",
        back_populates="users",
        lazy="selectin",
    )
    manager: Mapped["User | None"] = relationship("User", remote_side=[id], foreign_keys=[manager_id])
    job_role: Mapped["JobRole | None"] = relationship("JobRole", foreign_keys=[job_role_id])

    @property
    def role_keys(self) -> list[str]:
        return sorted(r.key for r in (self.roles or []))

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)  # e.g. "trainer"
    name: Mapped[str] = mapped_column(String(128), nullable=False)  # display name
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    users: Mapped[list[User]] = relationship(secondary="user_roles", back_populates="roles", lazy="selectin")
    permissions: Mapped[list["Permission"]] = relationship(
        secondary="role_permissions",
        back_populates="roles",
        lazy="selectin",
    )


class Permission(Base):
    __tablename__ = "permissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)  # e.g. "trainings.assign"
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    roles: Mapped[list[Role]] = relationship(secondary="role_permissions", back_populates="permissions", lazy="selectin")


class OtpCode(Base):
    """One-time login code mailed to an address. Rows are deleted once expired or exhausted."""

    __tablename__ = "otp_codes"
    __table_args__ = (
        UniqueConstraint("email", "code", name="uq_otp_email_code"),
        Index("idx_otp_email", "email"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    code: Mapped[str] = mapped_column(String(6), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)


class AuditEvent(Base):
    """
    Append-only audit trail event.
    Keep this table intentionally generic; module-specific tables can refer to it by id if needed.
    """

    __tablename__ = "audit_events"
    __table_args__ = (
        UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    actor_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    actor_user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    client_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)  # e.g. "training.assign"
    entity_type: Mapped[str | None] = mapped_column(String(128), nullable=True)  # e.g. "TrainingAssignment"
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)  # string for flexibility

    reason: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)  # small JSON string


# Ensure module models are imported so Base.metadata includes their tables.
# (Kept at bottom to avoid circular imports.)
from app.skillloop.modules.skills.models import Skill, SkillCategory, SkillResource  # noqa: E402,F401
from app.skillloop.modules.job_roles.models import JobRole, RoleCompetency  # noqa: E402,F401
from app.skillloop.modules.skill_matrix.models import SkillMatrixEntry  # noqa: E402,F401
from app.skillloop.modules.assessments.models import (  # noqa: E402,F401
    Answer,
    Assessment,
    AssessmentAssignment,
    AssessmentAttempt,
    Question,
)
from app.skillloop.modules.trainings.models import (  # noqa: E402,F401
    Attendance,
    Feedback,
    ProgressUpdate,
    ProofOfCompletion,
    Training,
    TrainingAssignment,
    TrainingCalendar,
)
from app.skillloop.modules.journeys.models import Journey, JourneyActivity, JourneyPhase  # noqa: E402,F401
from app.skillloop.modules.notifications.models import Notification  # noqa: E402,F401
from app.skillloop.modules.system_config.models import SystemConfig  # noqa: E402,F401
