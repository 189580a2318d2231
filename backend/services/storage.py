# backend/services/storage.py
"""
Registry snapshot store.

Persists the complete device list as one snapshot. Every save replaces the
whole table inside a single transaction, so an interrupted write leaves the
previous snapshot intact.
"""

import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from database import create_db_engine, get_db_session, init_db
from errors import PersistenceError
from models import Device, DeviceStatus
from models.orm import DeviceRecord

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Full-replace persistence of the device registry."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_db_engine(database_url, echo=echo)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
        init_db(self.engine)

    def load(self) -> List[Device]:
        """
        Load the snapshot in registry order.

        An empty or freshly created store is an empty registry.

        Raises:
            PersistenceError: If the store cannot be read
        """
        try:
            with get_db_session(self._session_factory) as session:
                records = session.query(DeviceRecord).order_by(DeviceRecord.position).all()
                devices = [self._to_device(r) for r in records]
        except (SQLAlchemyError, ValueError) as e:
            raise PersistenceError(
                f"Failed to load device snapshot: {e}",
                details={"databaseUrl": self.database_url},
            ) from e

        if devices:
            logger.info(f"Loaded {len(devices)} cameras from storage")
        else:
            logger.info("No stored cameras found, starting fresh")
        return devices

    def save(self, devices: Sequence[Device]) -> None:
        """
        Replace the stored snapshot with the given devices.

        Raises:
            PersistenceError: If the write fails (previous snapshot is kept)
        """
        try:
            with get_db_session(self._session_factory) as session:
                session.query(DeviceRecord).delete()
                session.add_all(
                    self._to_record(position, device)
                    for position, device in enumerate(devices)
                )
        except SQLAlchemyError as e:
            logger.error(f"Failed to save cameras: {e}")
            raise PersistenceError(
                f"Failed to save device snapshot: {e}",
                details={"databaseUrl": self.database_url, "count": len(devices)},
            ) from e

        logger.debug(f"Saved {len(devices)} cameras to storage")

    def clear(self) -> None:
        """Remove every stored device."""
        self.save([])
        logger.info("Cleared cameras from storage")

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _to_record(position: int, device: Device) -> DeviceRecord:
        return DeviceRecord(
            position=position,
            id=device.id,
            name=device.name,
            stream_uri=device.stream_uri,
            manufacturer=device.manufacturer,
            model=device.model,
            address=device.address,
            port=device.port,
            channel=device.channel,
            status=device.status.value,
            last_seen=device.last_seen.isoformat(),
            capabilities=list(device.capabilities) if device.capabilities is not None else None,
        )

    @staticmethod
    def _to_device(record: DeviceRecord) -> Device:
        data = record.to_dict()
        return Device(
            id=data["id"],
            name=data["name"],
            stream_uri=data["stream_uri"],
            manufacturer=data["manufacturer"],
            model=data["model"],
            address=data["address"],
            port=data["port"],
            channel=data["channel"],
            status=DeviceStatus(data["status"]),
            last_seen=datetime.fromisoformat(data["last_seen"]),
            capabilities=data["capabilities"],
        )


_snapshot_store: Optional[SnapshotStore] = None


def get_snapshot_store() -> SnapshotStore:
    """Get or create the snapshot store singleton."""
    global _snapshot_store
    if _snapshot_store is None:
        from config import settings
        _snapshot_store = SnapshotStore(settings.database_url)
    return _snapshot_store
