"""Trainings: catalog, assignment, progress, proofs of completion, feedback and the calendar."""
