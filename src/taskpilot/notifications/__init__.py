"""
Notification subsystem.

- router.py: event -> per-recipient notifications, async delivery
- feed.py: derive events from observed task row changes
"""
