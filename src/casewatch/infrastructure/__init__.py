"""
Infrastructure Layer
=====================

Cross-module technical concerns shared by the bounded contexts:
- Database connection management
"""
