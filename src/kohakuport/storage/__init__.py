"""Durable desired-state storage."""

from kohakuport.storage.exceptions import (
    StoreError,
    StoreOpenError,
    StorePersistenceError,
)
from kohakuport.storage.intents import IntentStore

__all__ = ["IntentStore", "StoreError", "StoreOpenError", "StorePersistenceError"]
