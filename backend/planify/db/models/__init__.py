"""ORM models exposed for metadata discovery."""
from planify.db.models.audit_log import AuditLog
from planify.db.models.user import User

__all__ = [
    "AuditLog",
    "User",
]
