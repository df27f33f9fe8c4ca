"""Database layer: SQLAlchemy models, session factory and record store."""

from proofvault.db.models import Anchor, AuditLog, Base, Credential
from proofvault.db.session import build_engine, build_session_factory, drop_all, init_db, session_scope
from proofvault.db.store import DuplicateRecordError, RecordStore

__all__ = [
    # Models
    "Base",
    "Credential",
    "Anchor",
    "AuditLog",
    # Session management
    "build_engine",
    "build_session_factory",
    "session_scope",
    "init_db",
    "drop_all",
    # Repository
    "RecordStore",
    "DuplicateRecordError",
]
