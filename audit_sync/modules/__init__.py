"""
Application services.

Audit handlers call these services; the services only talk to persistence
through an `AuditStore`.
"""
