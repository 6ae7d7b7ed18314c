"""
SecurePress Audit Log Service
=============================

Security event log for the SecurePress site-protection suite:
- Event writer with client address and actor enrichment
- PostgreSQL event store (in-memory backend for local runs)
- Filtered, paginated queries for the admin UI
- Retention sweeper and severity-gated notifications
"""

__version__ = "1.0.0"
__author__ = "SecurePress Team"
