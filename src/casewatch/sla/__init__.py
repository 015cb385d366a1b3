"""
SLA Deadline Module
===================

Bounded Context for work item deadlines, reminders and escalation.

Responsibilities:
- Day arithmetic on a fixed-offset civil calendar
- Resolve the most specific deadline rule per category and organization
- Send "N days before" reminders at most once per item and offset
- Escalate overdue, unpaused items exactly once and notify the escalation role
- Close escalations through a human resolution step
- Rule administration, breach listing and per-item status API
- Defaults hot-reloaded from YAML via watchdog
"""

__version__ = "1.0.0"
