"""Desired-state store exception classes."""


class StoreError(Exception):
    """Base exception for intent store operations."""

    pass


class StoreOpenError(StoreError):
    """The persisted store could not be opened or read at startup."""

    def __init__(self, path: str, reason: str):
        self.path = path
        super().__init__(f"Cannot open intent store at {path}: {reason}")


class StorePersistenceError(StoreError):
    """A mutation could not be written durably; nothing was changed."""

    def __init__(self, container_id: str, reason: str):
        self.container_id = container_id
        super().__init__(f"Failed to persist intent for {container_id}: {reason}")
