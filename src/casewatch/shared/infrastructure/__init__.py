"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Injectable clocks
"""
