"""
Batch orchestration for POST /sync.

Each submitted message is driven, in submission order, through:

  validate -> look up id -> (duplicate check -> insert)
                         -> (conflict resolution -> conditional update)

and ends in exactly one of saved, updated, skipped or error. Failures are
captured in the report; nothing raised by one message stops the batch.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

from meshsync.dedup import DUPLICATE_REASON, DuplicateDetector
from meshsync.errors import (
    DuplicateKeyError,
    NotFoundError,
    RecordValidationError,
    StorageError,
    VersionConflictError,
)
from meshsync.records import MessageRecord, reported_id, validate_record
from meshsync.resolver import Action, ConflictResolver, ConflictStrategy
from meshsync.schemas import (
    ConflictItem,
    ErrorItem,
    SavedItem,
    SkippedItem,
    SyncDetails,
    SyncResponse,
    SyncSummary,
    UpdatedItem,
)
from meshsync.storage import MessageStore

logger = logging.getLogger(__name__)

# Attempts per message when a concurrent writer wins the race on its id
MAX_ATTEMPTS = 3
RETRIES_EXHAUSTED_REASON = "Concurrent modification, resubmit later"


class Outcome(str, Enum):
    SAVED = "saved"
    UPDATED = "updated"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class RecordOutcome:
    """Terminal state of one submitted message."""
    outcome: Outcome
    item: Union[SavedItem, UpdatedItem, SkippedItem, ErrorItem]
    conflict: Optional[ConflictItem] = None


@dataclass
class SyncReport:
    """Per-batch accumulation of outcomes; discarded after the response."""
    strategy: ConflictStrategy = ConflictStrategy.SKIP
    saved: list = field(default_factory=list)
    updated: list = field(default_factory=list)
    skipped: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    conflicts: list = field(default_factory=list)

    def add(self, result: RecordOutcome) -> None:
        bucket = {
            Outcome.SAVED: self.saved,
            Outcome.UPDATED: self.updated,
            Outcome.SKIPPED: self.skipped,
            Outcome.ERROR: self.errors,
        }[result.outcome]
        bucket.append(result.item)
        if result.conflict is not None:
            self.conflicts.append(result.conflict)

    @property
    def summary(self) -> SyncSummary:
        return SyncSummary(
            saved=len(self.saved),
            updated=len(self.updated),
            skipped=len(self.skipped),
            errors=len(self.errors),
            conflicts=len(self.conflicts),
        )

    @property
    def is_success(self) -> bool:
        """True only if the batch changed the store."""
        return bool(self.saved or self.updated)

    def to_response(self) -> SyncResponse:
        return SyncResponse(
            status="completed",
            summary=self.summary,
            details=SyncDetails(
                saved=self.saved,
                updated=self.updated,
                skipped=self.skipped,
                errors=self.errors,
                conflicts=self.conflicts,
            ),
        )


class SyncOrchestrator:
    """Reconciles submitted batches against a MessageStore."""

    def __init__(self, store: MessageStore):
        self.store = store
        self.detector = DuplicateDetector(store)
        self.resolver = ConflictResolver(store)

    def sync(self, batch: Sequence[Any], strategy: Any = "skip") -> SyncReport:
        """
        Reconcile a batch of messages.

        Args:
            batch: Raw message entries as submitted
            strategy: Requested conflict strategy name

        Returns:
            SyncReport with exactly one outcome per entry
        """
        requested = strategy if strategy is not None else ConflictStrategy.SKIP.value
        decoded = ConflictStrategy.decode(strategy)
        logger.info(f"Sync started: {len(batch)} messages, strategy={requested!r}")

        report = SyncReport(strategy=decoded)
        for raw in batch:
            report.add(self._process(raw, decoded, requested))

        summary = report.summary
        logger.info(
            f"Sync finished: saved={summary.saved}, updated={summary.updated}, "
            f"skipped={summary.skipped}, errors={summary.errors}, conflicts={summary.conflicts}"
        )
        return report

    def _process(self, raw: Any, strategy: ConflictStrategy, requested: Any) -> RecordOutcome:
        try:
            record = validate_record(raw)
        except RecordValidationError as e:
            message_id = reported_id(raw)
            logger.debug(f"Message {message_id} rejected: {e}")
            return RecordOutcome(Outcome.ERROR, ErrorItem(message_id=message_id, reason=str(e)))

        for attempt in range(1, MAX_ATTEMPTS + 1):
            conflict = None
            try:
                existing = self.store.get(record.id)
                if existing is None:
                    return self._insert_new(record)

                conflict = ConflictItem(
                    message_id=record.id,
                    strategy_used=requested,
                    existing_timestamp=existing.timestamp,
                    new_timestamp=record.timestamp,
                )
                return self._resolve_conflict(record, existing, strategy, conflict)
            except (VersionConflictError, DuplicateKeyError, NotFoundError) as e:
                # Another writer changed this id between our read and write
                logger.warning(f"Lost race on {record.id} (attempt {attempt}/{MAX_ATTEMPTS}): {e}")
            except StorageError as e:
                logger.error(f"Storage failure for message {record.id}: {e}")
                return RecordOutcome(
                    Outcome.ERROR,
                    ErrorItem(message_id=record.id, reason=f"Database error: {e}"),
                    conflict,
                )

        return RecordOutcome(
            Outcome.ERROR,
            ErrorItem(message_id=record.id, reason=RETRIES_EXHAUSTED_REASON),
            conflict,
        )

    def _insert_new(self, record: MessageRecord) -> RecordOutcome:
        if self.detector.is_duplicate(record):
            return RecordOutcome(Outcome.SKIPPED, SkippedItem(id=record.id, reason=DUPLICATE_REASON))

        self.store.insert(record)
        return RecordOutcome(Outcome.SAVED, SavedItem(id=record.id, timestamp=record.timestamp))

    def _resolve_conflict(
        self,
        record: MessageRecord,
        existing,
        strategy: ConflictStrategy,
        conflict: ConflictItem,
    ) -> RecordOutcome:
        resolution = self.resolver.resolve(record, existing, strategy)
        if resolution.action is Action.SKIP:
            return RecordOutcome(
                Outcome.SKIPPED,
                SkippedItem(id=record.id, reason=resolution.reason),
                conflict,
            )

        version = self.resolver.apply(record, existing)
        return RecordOutcome(
            Outcome.UPDATED,
            UpdatedItem(id=record.id, version=version, timestamp=record.timestamp),
            conflict,
        )
