# backend/models/orm.py
"""
SQLAlchemy ORM models for persistent storage.
These rows are the durable snapshot of the registry, separate from the
in-memory Device dataclasses.
"""

from typing import Any, Dict

from sqlalchemy import Column, Integer, String, Text, JSON

from database import Base


class DeviceRecord(Base):
    """One registry entry in the persisted snapshot."""

    __tablename__ = "devices"

    # Position in the registry; preserves insertion order across reloads
    position = Column(Integer, primary_key=True, autoincrement=False)
    id = Column(String(64), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    stream_uri = Column(Text, nullable=False)
    manufacturer = Column(String(255), nullable=False, default="Unknown")
    model = Column(String(255), nullable=False, default="Unknown")
    address = Column(String(255), nullable=False)
    port = Column(Integer, nullable=False)
    channel = Column(Integer, nullable=False)
    status = Column(String(16), nullable=False)
    # ISO-8601 text so the timestamp round-trips exactly
    last_seen = Column(String(64), nullable=False)
    capabilities = Column(JSON, nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stream_uri": self.stream_uri,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "address": self.address,
            "port": self.port,
            "channel": self.channel,
            "status": self.status,
            "last_seen": self.last_seen,
            "capabilities": self.capabilities,
        }
