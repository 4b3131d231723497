"""
Near-duplicate detection for messages without an id collision.

Devices on a mesh often relay the same message twice under fresh ids. A
message is a duplicate when the same device already stored identical
content at an event time less than DUPLICATE_WINDOW_MS away.
"""

import logging

from meshsync.records import MessageRecord
from meshsync.storage import MessageStore

logger = logging.getLogger(__name__)

DUPLICATE_WINDOW_MS = 5000
DUPLICATE_REASON = "Duplicate content detected within 5-second window"


class DuplicateDetector:
    """Checks a candidate against stored messages of the same device."""

    def __init__(self, store: MessageStore):
        self.store = store

    def is_duplicate(self, candidate: MessageRecord) -> bool:
        """
        Check whether identical content from the same device is stored
        within the duplicate window.

        Content comparison is exact and case-sensitive. Any single match
        inside the window is enough.
        """
        matches = self.store.find_same_content(candidate.device_id, candidate.content)
        for match in matches:
            if abs(candidate.event_ms - match.event_ms) < DUPLICATE_WINDOW_MS:
                logger.debug(
                    f"Message {candidate.id} duplicates {match.id} "
                    f"({abs(candidate.event_ms - match.event_ms)} ms apart)"
                )
                return True
        return False
