"""Database module alias used by migrations and scripts."""
from aipm.db import get_db, SessionLocal, Base, engine

__all__ = ["get_db", "SessionLocal", "Base", "engine"]
