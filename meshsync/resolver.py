"""
Conflict resolution for messages whose id is already stored.

The strategy is chosen per batch by the client:

  * ``skip`` - keep the stored message (default)
  * ``latest`` - newest device timestamp wins
  * ``overwrite`` - the submitted message always wins
  * ``version`` - same as overwrite; the version counter records the change

Any other value resolves as UNKNOWN and skips.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from meshsync.records import MessageRecord
from meshsync.storage import MessageStore

logger = logging.getLogger(__name__)


class ConflictStrategy(str, Enum):
    SKIP = "skip"
    LATEST = "latest"
    OVERWRITE = "overwrite"
    VERSION = "version"
    UNKNOWN = "unknown"

    @classmethod
    def decode(cls, name: Any) -> "ConflictStrategy":
        """Map the requested strategy name to a member, UNKNOWN if unrecognised."""
        if name is None:
            return cls.SKIP
        try:
            return cls(name)
        except ValueError:
            logger.warning(f"Unknown conflict strategy requested: {name!r}")
            return cls.UNKNOWN


class Action(str, Enum):
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class Resolution:
    action: Action
    reason: Optional[str] = None


SKIP_REASONS = {
    ConflictStrategy.SKIP: "Message ID already exists (conflict: skip strategy)",
    ConflictStrategy.LATEST: "Existing message is newer (conflict: latest strategy)",
    ConflictStrategy.UNKNOWN: "Unknown conflict strategy",
}


class ConflictResolver:
    """Decides and applies the outcome of a same-id collision."""

    def __init__(self, store: MessageStore):
        self.store = store

    def resolve(self, candidate: MessageRecord, existing, strategy: ConflictStrategy) -> Resolution:
        """
        Decide whether ``candidate`` replaces ``existing``.

        ``latest`` compares parsed instants, so mixed timestamp shapes
        order correctly. Equal instants keep the stored message.
        """
        if strategy is ConflictStrategy.LATEST:
            if candidate.event_ms > existing.event_ms:
                return Resolution(Action.UPDATE)
            return Resolution(Action.SKIP, SKIP_REASONS[strategy])

        if strategy in (ConflictStrategy.OVERWRITE, ConflictStrategy.VERSION):
            return Resolution(Action.UPDATE)

        return Resolution(Action.SKIP, SKIP_REASONS[strategy])

    def apply(self, candidate: MessageRecord, existing) -> int:
        """
        Write ``candidate`` over ``existing``.

        The update is conditional on the version that was read, so a
        concurrent writer surfaces as VersionConflictError instead of a
        lost increment.

        Returns:
            The new version
        """
        return self.store.update(
            existing.id,
            candidate.mutable_fields(),
            expected_version=existing.version,
        )
