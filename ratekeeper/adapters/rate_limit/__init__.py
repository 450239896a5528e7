"""Rate limiting adapters.

A fixed-window limiter over a small storage abstraction: counters live in the
relational database in production, or in process memory for tests and local
development, without changing the API layer.
"""
