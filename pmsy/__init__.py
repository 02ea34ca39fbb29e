"""PMSY project-management backend.

Supabase-compatible REST layer over PostgreSQL with application-level
row visibility replacing native row-level security.
"""

__version__ = "1.0.0"
