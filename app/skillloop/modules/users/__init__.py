"""Employee accounts: profile fields, system roles, reporting line and job role."""
