"""
Skills catalog: categories, skills and curated learning resources.

Skills are the unit everything else hangs off: role competencies, skill
matrix rows, assessments and trainings all reference a skill.
"""
