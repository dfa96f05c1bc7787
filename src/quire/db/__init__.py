"""Release ledger database models and engine for Quire."""

from quire.db.engine import get_engine, get_session, init_database, reset_engine
from quire.db.models import ChannelStateRow, LedgerBase, ReleaseRow, SyncAttemptRow

__all__ = [
    "ChannelStateRow",
    "LedgerBase",
    "ReleaseRow",
    "SyncAttemptRow",
    "get_engine",
    "get_session",
    "init_database",
    "reset_engine",
]
