"""Peewee persistence layer for tunnel intents."""

from kohakuport.db.base import BaseModel, close_database, db, initialize_database
from kohakuport.db.intent import IntentRecord

__all__ = [
    "db",
    "BaseModel",
    "IntentRecord",
    "initialize_database",
    "close_database",
]
