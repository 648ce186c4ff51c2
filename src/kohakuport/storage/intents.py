"""
Desired-state store for tunnel intents.

IntentStore keeps every intent in memory and mirrors each mutation to the
SQLite database. A mutation is applied in memory only after its database
transaction has committed, so a failed write never leaves an intent visible
that a restart would lose.
"""

import threading

import peewee

from kohakuport.db.base import close_database, db, initialize_database
from kohakuport.db.intent import IntentRecord
from kohakuport.models.tunnel import TunnelIntent
from kohakuport.storage.exceptions import StoreOpenError, StorePersistenceError
from kohakuport.utils.logger import get_logger

logger = get_logger(__name__)


class IntentStore:
    """
    Persisted mapping from container id to TunnelIntent.

    All operations hold one re-entrant lock, so callers never observe a
    half-applied mutation and ``list()`` always returns a consistent copy.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._intents: dict[str, TunnelIntent] = {}
        self._opened = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def open(self) -> None:
        """
        Open the database and load every persisted intent.

        Raises:
            StoreOpenError: If the database cannot be opened or read.
        """
        with self._lock:
            try:
                initialize_database(self.db_path)
                loaded = {
                    record.container_id: record.to_intent()
                    for record in IntentRecord.select()
                }
            except (peewee.PeeweeException, ValueError, OSError) as e:
                raise StoreOpenError(self.db_path, str(e)) from e

            self._intents = loaded
            self._opened = True
            logger.info(f"Loaded {len(loaded)} tunnel intent(s) from {self.db_path}")

    def close(self) -> None:
        with self._lock:
            close_database()
            self._opened = False

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, container_id: str) -> TunnelIntent | None:
        with self._lock:
            return self._intents.get(container_id)

    def list(self) -> list[TunnelIntent]:
        """Snapshot of all intents, ordered by creation time."""
        with self._lock:
            return sorted(self._intents.values(), key=lambda i: i.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._intents)

    def __contains__(self, container_id: str) -> bool:
        with self._lock:
            return container_id in self._intents

    # =========================================================================
    # Mutations
    # =========================================================================

    def set(self, intent: TunnelIntent) -> TunnelIntent:
        """
        Create or replace the intent for a container.

        Replacing keeps the original creation time.

        Raises:
            StorePersistenceError: If the write did not commit.
        """
        with self._lock:
            existing = self._intents.get(intent.container_id)
            if existing is not None:
                intent = intent.with_changes(created_at=existing.created_at)

            try:
                with db.atomic():
                    IntentRecord.upsert(intent)
            except peewee.PeeweeException as e:
                logger.error(f"Failed to persist intent {intent.container_id}: {e}")
                raise StorePersistenceError(intent.container_id, str(e)) from e

            self._intents[intent.container_id] = intent
            logger.debug(
                f"Stored intent {intent.container_id} -> port {intent.target_port}"
            )
            return intent

    def delete(self, container_id: str) -> bool:
        """
        Delete the intent for a container.

        Returns:
            True if an intent existed and was removed.

        Raises:
            StorePersistenceError: If the delete did not commit.
        """
        with self._lock:
            if container_id not in self._intents:
                return False

            try:
                with db.atomic():
                    IntentRecord.delete_by_id(container_id)
            except peewee.PeeweeException as e:
                logger.error(f"Failed to delete intent {container_id}: {e}")
                raise StorePersistenceError(container_id, str(e)) from e

            del self._intents[container_id]
            logger.debug(f"Deleted intent {container_id}")
            return True
