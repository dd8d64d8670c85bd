"""Database configuration and utilities."""

from .session import SessionLocal, commit, get_db

__all__ = ["get_db", "commit", "SessionLocal"]
