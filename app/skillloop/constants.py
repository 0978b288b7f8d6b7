"""
Central constants for the Skill Loop application.
"""
from __future__ import annotations

# Proficiency ladder, lowest first. Numeric value 0 means "not assessed".
PROFICIENCY_LEVELS = ("BEGINNER", "BASIC", "INTERMEDIATE", "ADVANCED", "EXPERT")
LEVEL_VALUES = {name: i + 1 for i, name in enumerate(PROFICIENCY_LEVELS)}

# System roles (Role.key) in display order.
SYSTEM_ROLES = ("admin", "trainer", "mentor", "manager", "learner")
SYSTEM_ROLE_NAMES = {
    "admin": "Administrator",
    "trainer": "Trainer",
    "mentor": "Mentor",
    "manager": "Manager",
    "learner": "Learner",
}

EMPLOYEE_TYPES = ("NEW_EMPLOYEE", "EXISTING_EMPLOYEE")

# Permission catalog: key -> display name.
PERMISSIONS = {
    "dashboard.view": "Dashboard: view",
    "admin.view": "Admin: view shell",
    "audit.view": "Audit: view",
    "users.view": "Users: view",
    "users.manage": "Users: manage",
    "skills.view": "Skills: view",
    "skills.manage": "Skills: manage",
    "roles.view": "Job roles: view",
    "roles.manage": "Job roles: manage",
    "skill_matrix.view_own": "Skill matrix: view own",
    "skill_matrix.view_team": "Skill matrix: view team",
    "skill_matrix.manage": "Skill matrix: manage",
    "tna.view": "TNA: view",
    "tna.export": "TNA: export",
    "assessments.take": "Assessments: take",
    "assessments.manage": "Assessments: manage",
    "assessments.grade": "Assessments: grade",
    "assessments.assign": "Assessments: assign",
    "trainings.view": "Trainings: view",
    "trainings.create": "Trainings: create",
    "trainings.delete": "Trainings: delete",
    "trainings.assign": "Trainings: assign",
    "trainings.review": "Trainings: review progress and proofs",
    "feedback.view": "Feedback: view reports",
    "calendar.view": "Calendar: view",
    "journeys.view": "Journeys: view",
    "journeys.manage": "Journeys: manage",
    "config.manage": "System config: manage",
}

_EVERYONE = (
    "dashboard.view",
    "skill_matrix.view_own",
    "assessments.take",
    "trainings.view",
    "calendar.view",
)

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "admin": tuple(PERMISSIONS.keys()),
    "trainer": _EVERYONE
    + (
        "users.view",
        "skills.view",
        "roles.view",
        "assessments.manage",
        "assessments.grade",
        "assessments.assign",
        "trainings.create",
        "trainings.assign",
        "trainings.review",
        "feedback.view",
        "journeys.view",
    ),
    "mentor": _EVERYONE + ("trainings.review", "journeys.view"),
    "manager": _EVERYONE
    + (
        "users.view",
        "skills.view",
        "roles.view",
        "skill_matrix.view_team",
        "tna.view",
        "trainings.create",
        "trainings.assign",
        "feedback.view",
        "journeys.view",
    ),
    "learner": _EVERYONE,
}

DEFAULT_CATEGORY_NAME = "Other"
