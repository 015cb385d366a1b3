"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (SLA engine and Execution Ledger).

Architecture Pattern: Modular Monolith
- Each module (sla, ledger) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add business logic from SLA or Ledger to shared kernel.
"""

__version__ = "1.0.0"
