"""
Task subsystem.

Components:
- models.py: data structures (Task, RecurringTaskTemplate, Notification, ...)
- recurrence.py: next-occurrence arithmetic
- window.py: rolling window of materialized recurring instances
- notifications.py: per-recipient notification rows for a task
- lifecycle.py: user-initiated task mutations and queries
- inbox.py: a user's own notification rows
- history.py: per-user action history of task mutations
"""
