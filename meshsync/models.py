"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Boolean, Column, Float, Index, Integer, String, Text

from meshsync.storage import Base


class Message(Base):
    """
    SQLAlchemy model for messages synced from mesh devices.

    Table: messages
    Primary Key: id (client generated; one live row per id)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    device_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    timestamp = Column(String, nullable=False)  # As submitted by the device
    event_ms = Column(Integer, nullable=False)  # timestamp as UTC epoch ms
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    updated_at = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        # Duplicate detection and device-scoped listing
        Index("idx_device_timestamp", "device_id", "event_ms"),
    )


class EmergencyAlert(Base):
    """
    SQLAlchemy model for SOS/SAFE alerts raised by users.

    Table: emergency_alerts
    Alerts are never merged or deduplicated; status changes are explicit.
    """
    __tablename__ = "emergency_alerts"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    device_id = Column(String, nullable=True)
    alert_type = Column(String, nullable=False)  # SOS or SAFE
    message = Column(Text, nullable=True)
    lat = Column(Float, nullable=False)
    lon = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="active")
    timestamp = Column(String, nullable=False)
    resolved = Column(Boolean, nullable=False, default=False)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class EmergencyContact(Base):
    """
    SQLAlchemy model for a user's emergency contacts.

    Table: emergency_contacts
    """
    __tablename__ = "emergency_contacts"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    created_at = Column(String, nullable=False)
