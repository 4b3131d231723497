import logging
from typing import Generator, List, Optional

from sqlalchemy import create_engine, text, func
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from meshsync.config import settings
from meshsync.errors import DuplicateKeyError, NotFoundError, StorageError, VersionConflictError
from meshsync.records import MessageRecord
from meshsync.utils import utc_now_iso

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine with SQLite-specific settings
# check_same_thread=False is required for SQLite to work with FastAPI's async
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(
    settings.DATABASE_URL,
    connect_args=connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db(bind=None) -> None:
    """
    Initialize the database by creating all tables and indexes.
    Called during application startup.
    """
    bind = bind if bind is not None else engine
    logger.debug(f"Initializing database with URL: {bind.url}")
    try:
        # Import models to register them with Base.metadata
        from meshsync import models  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            from meshsync.models import Message
            db.query(Message.id).limit(1).all()
            logger.debug("Messages table found, schema is applied")
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Message Store
# =============================================================================

class MessageStore:
    """
    Keyed store for synced messages.

    Wraps one SQLAlchemy session. Every mutation commits on its own, so a
    batch is atomic per record and never as a whole. Version increments go
    through a compare-and-swap UPDATE keyed on the expected prior version.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, message_id: str):
        """
        Retrieve a message by its ID.

        Returns:
            Message object if found, None otherwise
        """
        from meshsync.models import Message

        logger.debug(f"Looking up message by ID: {message_id}")
        try:
            return self.db.query(Message).filter(Message.id == message_id).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e

    def find_same_content(self, device_id: str, content: str) -> list:
        """All messages from a device whose content is byte-identical."""
        from meshsync.models import Message

        try:
            return (
                self.db.query(Message)
                .filter(Message.device_id == device_id, Message.content == content)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e

    def insert(self, record: MessageRecord):
        """
        Insert a new message at version 1.

        Raises:
            DuplicateKeyError: If the id is already stored
            StorageError: On any other database failure
        """
        from meshsync.models import Message

        now = utc_now_iso()
        message = Message(
            id=record.id,
            device_id=record.device_id,
            content=record.content,
            lat=record.lat,
            lon=record.lon,
            timestamp=record.timestamp,
            event_ms=record.event_ms,
            created_at=now,
            updated_at=now,
            version=1,
        )
        try:
            self.db.add(message)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.info(f"Insert rejected, id already stored: {record.id}")
            raise DuplicateKeyError(record.id) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to insert message {record.id}: {e}")
            raise StorageError(str(e)) from e

        logger.info(f"Message inserted: {record.id}")
        return message

    def update(self, message_id: str, fields: dict, expected_version: int) -> int:
        """
        Overwrite fields of a stored message and bump its version.

        The row is only touched if its version still equals
        ``expected_version``; the new version is ``expected_version + 1``.

        Returns:
            The new version

        Raises:
            NotFoundError: If the id is not stored
            VersionConflictError: If another writer bumped the version first
            StorageError: On database failure
        """
        from meshsync.models import Message

        new_version = expected_version + 1
        values = dict(fields, updated_at=utc_now_iso(), version=new_version)
        try:
            changed = (
                self.db.query(Message)
                .filter(Message.id == message_id, Message.version == expected_version)
                .update(values, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update message {message_id}: {e}")
            raise StorageError(str(e)) from e

        if changed == 0:
            if self.get(message_id) is None:
                raise NotFoundError(message_id)
            logger.warning(f"Version conflict on {message_id}, expected v{expected_version}")
            raise VersionConflictError(message_id, expected_version)

        logger.info(f"Message updated: {message_id} -> v{new_version}")
        return new_version

    def delete(self, message_id: str) -> None:
        """
        Delete a message by ID.

        Raises:
            NotFoundError: If the id is not stored
        """
        from meshsync.models import Message

        try:
            deleted = self.db.query(Message).filter(Message.id == message_id).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e

        if deleted == 0:
            raise NotFoundError(message_id)
        logger.info(f"Message deleted: {message_id}")

    def list_messages(
        self,
        device_id: Optional[str] = None,
        since_ms: Optional[int] = None,
        until_ms: Optional[int] = None,
        min_version: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List:
        """
        Retrieve messages with filtering, newest event first.

        Args:
            device_id: Filter by originating device (exact match)
            since_ms: Inclusive lower bound on event time (epoch ms)
            until_ms: Inclusive upper bound on event time (epoch ms)
            min_version: Only messages with version >= this value
            limit: Optional row cap

        Returns:
            List of messages ordered by event time DESC, id ASC
        """
        from meshsync.models import Message

        logger.debug(
            f"Filters: device_id={device_id}, since={since_ms}, until={until_ms}, "
            f"min_version={min_version}, limit={limit}"
        )

        query = self.db.query(Message)

        if device_id:
            query = query.filter(Message.device_id == device_id)
        if since_ms is not None:
            query = query.filter(Message.event_ms >= since_ms)
        if until_ms is not None:
            query = query.filter(Message.event_ms <= until_ms)
        if min_version is not None:
            query = query.filter(Message.version >= min_version)

        query = query.order_by(Message.event_ms.desc(), Message.id.asc())

        if limit:
            query = query.limit(limit)

        try:
            return query.all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e

    def list_versioned(self, limit: int = 50) -> List:
        """Messages updated at least once, most recently updated first."""
        from meshsync.models import Message

        try:
            return (
                self.db.query(Message)
                .filter(Message.version > 1)
                .order_by(Message.updated_at.desc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e

    def count(self) -> int:
        from meshsync.models import Message

        try:
            return self.db.query(func.count(Message.id)).scalar() or 0
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(str(e)) from e


def get_store() -> Generator[MessageStore, None, None]:
    """Dependency yielding a MessageStore bound to a fresh session."""
    db = SessionLocal()
    try:
        yield MessageStore(db)
    finally:
        db.close()
