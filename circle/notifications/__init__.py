"""Notification delivery: web push and scheduled notification dispatch."""
