"""
Execution Ledger Module
========================

Bounded Context for job execution bookkeeping.

Responsibilities:
- Register named jobs and run them on schedule, on trigger or on demand
- Record one append-only row per run with outcome, duration and counters
- Expose a manual retry and a health summary for operators
"""
