"""
Assessments module.

- Authoring: assessments, questions, CSV bulk upload, question bank, AI drafts
- Assignment of assessments to employees
- Taking: timed attempts, auto-grading of objective questions
- Manual grading of descriptive answers; passing updates the skill matrix
"""
