"""Live support chat between portal users and support admins."""
