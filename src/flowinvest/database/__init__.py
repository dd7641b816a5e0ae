"""
Database utilities, ORM models and the record store.
"""

from .models import Record  # noqa: F401
from .session import build_record_store, create_engine_from_settings, get_session_maker, init_models  # noqa: F401
from .store import COLLECTIONS, RecordStore  # noqa: F401
