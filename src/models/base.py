"""
SQLAlchemy 2.0 async DeclarativeBase for the price tracker.

All models inherit from this Base.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all price tracker database models."""
    pass
