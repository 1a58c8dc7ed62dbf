"""Database module: declarative base, engine and session factory."""
from .models import Base
from .connection import Database, create_db_engine, init_db, normalize_database_url

__all__ = [
    'Base',
    'Database',
    'create_db_engine',
    'init_db',
    'normalize_database_url',
]
