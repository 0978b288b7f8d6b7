"""
Skill matrix: per-employee current vs desired level for each tracked skill,
the gap arithmetic on top of it, and training needs analysis (TNA) reports.
"""
