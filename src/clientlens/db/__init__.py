"""Database layer for ClientLens.

This package provides SQLite database access:
- Schema definition and initialization (models.py)
- Async CRUD operations via DatabaseStore (store.py)
"""

from clientlens.db.models import SCHEMA_VERSION, init_database, verify_schema
from clientlens.db.store import (
    ClientProfile,
    Communication,
    DatabaseStore,
    Insight,
    LLMLogEntry,
    new_id,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "ClientProfile",
    "Communication",
    "DatabaseStore",
    "Insight",
    "LLMLogEntry",
    "new_id",
]
