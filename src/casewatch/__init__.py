"""
Casewatch
=========

Deadline tracking and escalation engine for case-like work items.
"""

__version__ = "1.0.0"
