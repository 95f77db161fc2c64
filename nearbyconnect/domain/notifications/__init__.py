"""Notification fan-out and read tracking."""
