"""
In-app notifications, optionally mirrored to email.
"""
