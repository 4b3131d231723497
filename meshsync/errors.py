"""
Error taxonomy for the sync engine and its record store.

Per-record errors are captured into the batch report by the orchestrator;
route handlers translate the rest into HTTP responses.
"""


class SyncStoreError(Exception):
    """Base class for all meshsync errors."""


class RecordValidationError(SyncStoreError):
    """A submitted record is missing fields or carries a malformed value."""


class DuplicateKeyError(SyncStoreError):
    """Insert targeted an id that is already stored."""

    def __init__(self, entity_id: str):
        super().__init__(f"id already exists: {entity_id}")
        self.entity_id = entity_id


class NotFoundError(SyncStoreError):
    """Update or delete targeted an id that is not stored."""

    def __init__(self, entity_id: str):
        super().__init__(f"id not found: {entity_id}")
        self.entity_id = entity_id


class VersionConflictError(SyncStoreError):
    """Compare-and-swap update lost against a concurrent writer."""

    def __init__(self, entity_id: str, expected_version: int):
        super().__init__(
            f"version of {entity_id} is no longer {expected_version}"
        )
        self.entity_id = entity_id
        self.expected_version = expected_version


class StorageError(SyncStoreError):
    """The underlying database failed."""
