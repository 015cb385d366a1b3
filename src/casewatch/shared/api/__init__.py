"""Shared HTTP plumbing (middleware, trigger authentication)."""
