from __future__ import annotations

JOURNEY_STATUSES = ("IN_PROGRESS", "PAUSED", "COMPLETED")
PHASE_STATUSES = ("NOT_STARTED", "IN_PROGRESS", "COMPLETED", "OVERDUE", "SKIPPED")
# A phase counts as "current" while in either of these states.
ACTIVE_PHASE_STATUSES = ("IN_PROGRESS", "OVERDUE")

PHASE_TYPES = (
    "INDUCTION_INITIAL_ASSESSMENT",
    "INDUCTION_TRAINING",
    "SKILL_ASSESSMENT",
    "TNA_GENERATION",
    "PROGRESS_TRACKING",
    "FEEDBACK_COLLECTION",
    "POST_ASSESSMENT",
    "ROLE_ASSESSMENT",
    "TRAINING_ASSIGNMENT",
    "TRAINING_EXECUTION",
    "RE_ASSESSMENT",
    "MATRIX_UPDATE",
    "CUSTOM",
)

DEFAULT_NEW_EMPLOYEE_PHASES = (
    {"phase_type": "INDUCTION_INITIAL_ASSESSMENT", "title": "Initial Assessment", "description": "Baseline skills assessment for the new employee", "duration_days": 2},
    {"phase_type": "INDUCTION_TRAINING", "title": "Induction Training", "description": "Company orientation and initial training", "duration_days": 15},
    {"phase_type": "SKILL_ASSESSMENT", "title": "Skill Assessment", "description": "Comprehensive skill evaluation", "duration_days": 3},
    {"phase_type": "TNA_GENERATION", "title": "TNA Generation", "description": "Training needs analysis and planning", "duration_days": 5},
    {"phase_type": "PROGRESS_TRACKING", "title": "Training Execution & Progress Tracking", "description": "Execute the training plan and track progress", "duration_days": 15},
    {"phase_type": "FEEDBACK_COLLECTION", "title": "Feedback Collection", "description": "Collect feedback on training effectiveness", "duration_days": 2},
    {"phase_type": "POST_ASSESSMENT", "title": "Post-Assessment", "description": "Final assessment to validate skill acquisition", "duration_days": 3},
)

DEFAULT_EXISTING_EMPLOYEE_PHASES = (
    {"phase_type": "ROLE_ASSESSMENT", "title": "Role Assessment", "description": "Assess skills against role requirements", "duration_days": 3},
    {"phase_type": "TRAINING_ASSIGNMENT", "title": "Training Assignment", "description": "Assign training based on skill gaps", "duration_days": 2},
    {"phase_type": "TRAINING_EXECUTION", "title": "Training Execution", "description": "Complete assigned training", "duration_days": 30},
    {"phase_type": "RE_ASSESSMENT", "title": "Re-Assessment", "description": "Validate skill improvement", "duration_days": 2},
    {"phase_type": "MATRIX_UPDATE", "title": "Matrix Update", "description": "Update the skill matrix with new proficiency levels", "duration_days": 1},
)


def default_phases(employee_type: str) -> list[dict]:
    src = DEFAULT_NEW_EMPLOYEE_PHASES if employee_type == "NEW_EMPLOYEE" else DEFAULT_EXISTING_EMPLOYEE_PHASES
    return [dict(p) for p in src]
