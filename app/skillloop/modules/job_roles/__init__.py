"""
Job roles (competency frameworks).

A job role lists the skills it needs and the level each is needed at.
Holders of a role get those competencies mirrored into their skill matrix.
"""
