"""Persistence for aircraft, flights, profiles, and notifications."""

from .models import Aircraft, Base, Flight, Notification, UserProfile, UserSettings
from .session import get_db, get_engine, get_sessionmaker, init_db, session_scope

__all__ = [
    "Aircraft",
    "Base",
    "Flight",
    "Notification",
    "UserProfile",
    "UserSettings",
    "get_db",
    "get_engine",
    "get_sessionmaker",
    "init_db",
    "session_scope",
]
