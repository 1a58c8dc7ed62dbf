"""
SQLAlchemy declarative base shared by all index tables.

Feature packages (e.g. ``picfinder.core.images.models``) define their
tables against this ``Base`` so a single ``create_all`` builds the schema.
"""
from sqlalchemy.orm import declarative_base

Base = declarative_base()
