"""Initial schema: identity, skills, job roles, skill matrix, assessments, trainings, journeys.

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _user_fk(col: str, ondelete: str = "SET NULL") -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint([col], ["users.id"], ondelete=ondelete)


def upgrade() -> None:
    # ---------- Identity ----------
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("employee_no", sa.String(64), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("designation", sa.String(255), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("date_of_joining", sa.Date(), nullable=True),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.Column("job_role_id", sa.Integer(), nullable=True),
        sa.Column("employee_type", sa.String(32), nullable=True),
        sa.Column("journey_status", sa.String(32), nullable=False, server_default="NOT_STARTED"),
        sa.Column("current_phase_id", sa.Integer(), nullable=True),
        sa.Column("induction_start_date", sa.DateTime(), nullable=True),
        sa.Column("email_verified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        _user_fk("manager_id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("employee_no"),
    )
    op.create_index("idx_users_department", "users", ["department"])
    op.create_index("idx_users_manager", "users", ["manager_id"])

    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key"),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), primary_key=True),
        sa.Column("role_id", sa.Integer(), primary_key=True),
        _user_fk("user_id", "CASCADE"),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), primary_key=True),
        sa.Column("permission_id", sa.Integer(), primary_key=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"], ondelete="CASCADE"),
    )
    op.create_table(
        "otp_codes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", "code", name="uq_otp_email_code"),
    )
    op.create_index("idx_otp_email", "otp_codes", ["email"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        _user_fk("actor_user_id"),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    # ---------- Skills ----------
    op.create_table(
        "skill_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color_class", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("name"),
    )
    op.create_table(
        "skills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("proficiency_levels", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["category_id"], ["skill_categories.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("idx_skills_category", "skills", ["category_id"])

    op.create_table(
        "skill_resources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("skill_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("resource_type", sa.String(32), nullable=False, server_default="OTHER"),
        sa.Column("level", sa.String(32), nullable=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("estimated_hours", sa.Float(), nullable=True),
        sa.Column("provider", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["skill_id"], ["skills.id"], ondelete="CASCADE"),
        _user_fk("created_by_user_id"),
    )
    op.create_index("idx_skill_resources_skill", "skill_resources", ["skill_id"])

    # ---------- Job roles ----------
    op.create_table(
        "job_roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", sa.String(16), nullable=False, server_default="ENTRY"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _user_fk("created_by_user_id"),
        sa.UniqueConstraint("name"),
        sa.CheckConstraint("level IN ('ENTRY', 'MID', 'SENIOR', 'LEAD')", name="ck_job_roles_level"),
    )
    op.create_index("idx_job_roles_department", "job_roles", ["department"])
    # users <-> job_roles reference each other; close the loop once both exist.
    with op.batch_alter_table("users") as batch:
        batch.create_foreign_key("fk_users_job_role_id", "job_roles", ["job_role_id"], ["id"], ondelete="SET NULL")

    op.create_table(
        "role_competencies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_role_id", sa.Integer(), nullable=False),
        sa.Column("skill_id", sa.Integer(), nullable=False),
        sa.Column("required_level", sa.String(32), nullable=False),
        sa.Column("priority", sa.String(16), nullable=False, server_default="REQUIRED"),
        sa.ForeignKeyConstraint(["job_role_id"], ["job_roles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["skill_id"], ["skills.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("job_role_id", "skill_id", name="uq_role_competency_role_skill"),
        sa.CheckConstraint("priority IN ('REQUIRED', 'PREFERRED', 'OPTIONAL')", name="ck_role_competencies_priority"),
    )

    # ---------- Skill matrix ----------
    op.create_table(
        "skill_matrix",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("skill_id", sa.Integer(), nullable=False),
        sa.Column("desired_level", sa.String(32), nullable=False),
        sa.Column("current_level", sa.String(32), nullable=True),
        sa.Column("gap_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="not_started"),
        sa.Column("last_assessed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        _user_fk("user_id", "CASCADE"),
        sa.ForeignKeyConstraint(["skill_id"], ["skills.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint("user_id", "skill_id", name="uq_skill_matrix_user_skill"),
    )
    op.create_index("idx_skill_matrix_status", "skill_matrix", ["status"])

    # ---------- Assessments ----------
    op.create_table(
        "assessments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("skill_id", sa.Integer(), nullable=True),
        sa.Column("total_marks", sa.Integer(), nullable=False),
        sa.Column("passing_score", sa.Float(), nullable=False, server_default="70"),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_pre_assessment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(16), nullable=False, server_default="DRAFT"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["skill_id"], ["skills.id"], ondelete="RESTRICT"),
        _user_fk("created_by_user_id"),
        sa.CheckConstraint("status IN ('DRAFT', 'PUBLISHED', 'ARCHIVED')", name="ck_assessments_status"),
    )
    op.create_index("idx_assessments_skill", "assessments", ["skill_id"])
    op.create_index("idx_assessments_status", "assessments", ["status"])

    op.create_table(
        "questions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(16), nullable=False),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("correct_answer", sa.Text(), nullable=True),
        sa.Column("marks", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("difficulty_level", sa.String(32), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        sa.CheckConstraint("marks > 0", name="ck_questions_marks_positive"),
    )
    op.create_index("idx_questions_assessment_order", "questions", ["assessment_id", "order_index"])

    op.create_table(
        "assessment_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by_user_id", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("assigned_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        _user_fk("user_id", "CASCADE"),
        _user_fk("assigned_by_user_id"),
        sa.UniqueConstraint("assessment_id", "user_id", name="uq_assessment_assignment"),
    )
    op.create_index("idx_assessment_assignments_due", "assessment_assignments", ["status", "due_date"])

    op.create_table(
        "assessment_attempts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assessment_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("percentage", sa.Float(), nullable=True),
        sa.Column("passed", sa.Boolean(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="in_progress"),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="CASCADE"),
        _user_fk("user_id", "CASCADE"),
    )
    op.create_index("idx_attempts_user_assessment", "assessment_attempts", ["user_id", "assessment_id"])
    op.create_index("idx_attempts_status", "assessment_attempts", ["status"])

    op.create_table(
        "answers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("attempt_id", sa.Integer(), nullable=False),
        sa.Column("question_id", sa.Integer(), nullable=False),
        sa.Column("answer_text", sa.Text(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("marks_awarded", sa.Float(), nullable=True),
        sa.Column("trainer_feedback", sa.Text(), nullable=True),
        sa.Column("graded_by_user_id", sa.Integer(), nullable=True),
        sa.Column("graded_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["attempt_id"], ["assessment_attempts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["question_id"], ["questions.id"], ondelete="CASCADE"),
        _user_fk("graded_by_user_id"),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    # ---------- Trainings ----------
    op.create_table(
        "trainings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("topic_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("duration_hours", sa.Float(), nullable=True),
        sa.Column("skill_id", sa.Integer(), nullable=True),
        sa.Column("resources", sa.Text(), nullable=True),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("meeting_link", sa.String(1024), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["skill_id"], ["skills.id"], ondelete="RESTRICT"),
        _user_fk("created_by_user_id"),
        sa.CheckConstraint("mode IN ('ONLINE', 'OFFLINE')", name="ck_trainings_mode"),
    )
    op.create_index("idx_trainings_skill", "trainings", ["skill_id"])

    op.create_table(
        "training_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("training_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("trainer_id", sa.Integer(), nullable=True),
        sa.Column("mentor_id", sa.Integer(), nullable=True),
        sa.Column("assigned_by_user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="ASSIGNED"),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("target_completion_date", sa.DateTime(), nullable=False),
        sa.Column("completion_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["training_id"], ["trainings.id"], ondelete="RESTRICT"),
        _user_fk("user_id", "CASCADE"),
        _user_fk("trainer_id"),
        _user_fk("mentor_id"),
        _user_fk("assigned_by_user_id"),
        sa.CheckConstraint(
            "status IN ('ASSIGNED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name="ck_training_assignments_status",
        ),
    )
    op.create_index("idx_training_assignments_user_status", "training_assignments", ["user_id", "status"])
    op.create_index("idx_training_assignments_training", "training_assignments", ["training_id"])

    op.create_table(
        "training_calendar",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("training_id", sa.Integer(), nullable=False),
        sa.Column("training_date", sa.DateTime(), nullable=False),
        sa.Column("venue", sa.String(255), nullable=True),
        sa.Column("meeting_link", sa.String(1024), nullable=True),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["training_id"], ["trainings.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_training_calendar_date", "training_calendar", ["training_date"])

    op.create_table(
        "attendance",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("calendar_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("marked_by_user_id", sa.Integer(), nullable=True),
        sa.Column("marked_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["calendar_id"], ["training_calendar.id"], ondelete="CASCADE"),
        _user_fk("user_id", "CASCADE"),
        _user_fk("marked_by_user_id"),
        sa.UniqueConstraint("calendar_id", "user_id", name="uq_attendance_calendar_user"),
        sa.CheckConstraint("status IN ('PRESENT', 'ABSENT', 'LATE')", name="ck_attendance_status"),
    )

    op.create_table(
        "progress_updates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("week_number", sa.Integer(), nullable=False),
        sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("topics_covered", sa.Text(), nullable=True),
        sa.Column("hours_spent", sa.Float(), nullable=False, server_default="0"),
        sa.Column("challenges", sa.Text(), nullable=True),
        sa.Column("next_steps", sa.Text(), nullable=True),
        sa.Column("mentor_comments", sa.Text(), nullable=True),
        sa.Column("mentor_commented_by_user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assignment_id"], ["training_assignments.id"], ondelete="CASCADE"),
        _user_fk("mentor_commented_by_user_id"),
        sa.UniqueConstraint("assignment_id", "week_number", name="uq_progress_assignment_week"),
        sa.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_progress_completion_range",
        ),
    )

    op.create_table(
        "proofs_of_completion",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("original_filename", sa.Text(), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("reviewer_comments", sa.Text(), nullable=True),
        sa.Column("reviewed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assignment_id"], ["training_assignments.id"], ondelete="CASCADE"),
        _user_fk("reviewed_by_user_id"),
        sa.CheckConstraint("status IN ('PENDING', 'APPROVED', 'REJECTED')", name="ck_proofs_status"),
    )
    op.create_index("idx_proofs_status", "proofs_of_completion", ["status"])

    op.create_table(
        "training_feedback",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("assignment_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("material_helpful", sa.Integer(), nullable=False),
        sa.Column("interactive_engaging", sa.Integer(), nullable=False),
        sa.Column("trainer_answered", sa.Integer(), nullable=False),
        sa.Column("content_satisfaction", sa.Integer(), nullable=False),
        sa.Column("overall_rating", sa.Integer(), nullable=False),
        sa.Column("extended", sa.JSON(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["assignment_id"], ["training_assignments.id"], ondelete="CASCADE"),
        _user_fk("user_id", "CASCADE"),
        sa.UniqueConstraint("assignment_id", name="uq_feedback_assignment"),
        sa.CheckConstraint("overall_rating >= 1 AND overall_rating <= 5", name="ck_feedback_overall_range"),
    )

    # ---------- Journeys ----------
    op.create_table(
        "journeys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("employee_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("cycle_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        _user_fk("user_id", "CASCADE"),
        sa.CheckConstraint("status IN ('IN_PROGRESS', 'PAUSED', 'COMPLETED')", name="ck_journeys_status"),
        sa.CheckConstraint("employee_type IN ('NEW_EMPLOYEE', 'EXISTING_EMPLOYEE')", name="ck_journeys_employee_type"),
    )
    op.create_index("idx_journeys_user_status", "journeys", ["user_id", "status"])

    op.create_table(
        "journey_phases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("journey_id", sa.Integer(), nullable=False),
        sa.Column("phase_number", sa.Integer(), nullable=False),
        sa.Column("phase_type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="NOT_STARTED"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("mentor_id", sa.Integer(), nullable=True),
        sa.Column("assessment_id", sa.Integer(), nullable=True),
        sa.Column("training_assignment_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        _user_fk("mentor_id"),
        sa.ForeignKeyConstraint(["assessment_id"], ["assessments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["training_assignment_id"], ["training_assignments.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('NOT_STARTED', 'IN_PROGRESS', 'COMPLETED', 'OVERDUE', 'SKIPPED')",
            name="ck_journey_phases_status",
        ),
        sa.CheckConstraint("duration_days >= 1", name="ck_journey_phases_duration"),
    )
    op.create_index("idx_journey_phases_status_due", "journey_phases", ["status", "due_date"])
    op.create_index("idx_journey_phases_mentor", "journey_phases", ["mentor_id"])

    op.create_table(
        "journey_activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("journey_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("activity_type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phase_number", sa.Integer(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        _user_fk("user_id"),
    )
    op.create_index("idx_journey_activities_journey_created", "journey_activities", ["journey_id", "created_at"])

    # ---------- Notifications & config ----------
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(64), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("link", sa.String(512), nullable=True),
        sa.Column("ref", sa.String(128), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        _user_fk("user_id", "CASCADE"),
    )
    op.create_index("idx_notifications_user_read", "notifications", ["user_id", "is_read"])
    op.create_index("idx_notifications_type_created", "notifications", ["type", "created_at"])

    op.create_table(
        "system_config",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("updated_by_user_id", sa.Integer(), nullable=True),
        _user_fk("updated_by_user_id"),
        sa.UniqueConstraint("key"),
    )


def downgrade() -> None:
    for table in (
        "system_config",
        "notifications",
        "journey_activities",
        "journey_phases",
        "journeys",
        "training_feedback",
        "proofs_of_completion",
        "progress_updates",
        "attendance",
        "training_calendar",
        "training_assignments",
        "trainings",
        "answers",
        "assessment_attempts",
        "assessment_assignments",
        "questions",
        "assessments",
        "skill_matrix",
        "role_competencies",
    ):
        op.drop_table(table)
    with op.batch_alter_table("users") as batch:
        batch.drop_constraint("fk_users_job_role_id", type_="foreignkey")
    for table in (
        "job_roles",
        "skill_resources",
        "skills",
        "skill_categories",
        "audit_events",
        "otp_codes",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
