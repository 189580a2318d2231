# backend/services/registry.py
"""
Device registry service.

Authoritative in-memory device table with snapshot persistence. All reads and
writes go through one lock; every mutation writes a full snapshot and is
rolled back in memory if that write fails.
"""

import logging
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence, Tuple

from errors import NotFoundError, PersistenceError, ValidationError
from models import Device, DeviceCandidate, DeviceStatus, DiscoveryMethod, utcnow
from services.normalizer import build_channel_stream_uri
from services.storage import SnapshotStore

logger = logging.getLogger(__name__)

MAX_DVR_CHANNELS = 16


class DeviceRegistry:
    """Owns device lifetime: create, mutate, delete, merge."""

    def __init__(self, store: Optional[SnapshotStore] = None):
        self._store = store
        self._devices: Dict[str, Device] = {}
        self._lock = RLock()

    # =========================================================================
    # LOADING
    # =========================================================================

    def load(self) -> int:
        """
        Replace the in-memory table with the stored snapshot.

        Returns:
            Number of devices loaded
        """
        if self._store is None:
            return 0
        devices = self._store.load()
        with self._lock:
            self._devices = {d.id: d for d in devices}
        logger.info(f"Loaded {len(devices)} cameras from persistent storage")
        return len(devices)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def list(self) -> List[Device]:
        """All devices in registry order (copies)."""
        with self._lock:
            return [d.copy() for d in self._devices.values()]

    def get(self, device_id: str) -> Optional[Device]:
        with self._lock:
            device = self._devices.get(device_id)
            return device.copy() if device else None

    def contains(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def find_by_key(self, address: str, channel: int) -> Optional[Device]:
        with self._lock:
            device = self._find_by_key(address, channel)
            return device.copy() if device else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def count_by_status(self) -> Dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in DeviceStatus}
            for device in self._devices.values():
                counts[device.status.value] += 1
            counts["total"] = len(self._devices)
            return counts

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add(self, device: Device) -> Device:
        """
        Add one device (manual registration).

        Raises:
            ValidationError: If the id or (address, channel) is already taken
            PersistenceError: If the snapshot cannot be written
        """
        if device.channel < 0:
            raise ValidationError("Channel must be non-negative", field="channel", value=device.channel)

        with self._lock:
            if device.id in self._devices:
                raise ValidationError(f"Device id already exists: {device.id}", field="id", value=device.id)
            existing = self._find_by_key(device.address, device.channel)
            if existing:
                raise ValidationError(
                    f"A device is already registered at {device.address} channel {device.channel}",
                    field="channel",
                    value=device.channel,
                    details={"existingId": existing.id},
                )

            stored = device.copy()
            stored.last_seen = utcnow()
            with self._transaction():
                self._devices[stored.id] = stored

        logger.info(f"Manually added camera: {stored.name}")
        return stored.copy()

    def remove(self, device_id: str) -> bool:
        """
        Delete a device.

        Returns:
            True if deleted, False if not found
        """
        with self._lock:
            if device_id not in self._devices:
                return False
            with self._transaction():
                del self._devices[device_id]

        logger.info(f"Removed camera: {device_id}")
        return True

    def update(self, device_id: str, partial: Dict[str, Any]) -> bool:
        """
        Apply a partial field update.

        Unknown fields and None values are ignored; the id is immutable.

        Returns:
            True if updated, False if not found

        Raises:
            ValidationError: If the update is malformed or would duplicate
                another device's (address, channel)
        """
        updates = {
            key: value for key, value in partial.items()
            if key in Device.UPDATABLE_FIELDS and value is not None
        }
        if "status" in updates:
            try:
                updates["status"] = DeviceStatus(updates["status"])
            except ValueError:
                raise ValidationError("Invalid status", field="status", value=partial.get("status"))
        for key in ("port", "channel"):
            if key in updates:
                try:
                    updates[key] = int(updates[key])
                except (TypeError, ValueError):
                    raise ValidationError(f"Invalid {key}", field=key, value=updates[key])
        if updates.get("channel", 0) < 0:
            raise ValidationError("Channel must be non-negative", field="channel", value=updates["channel"])

        with self._lock:
            current = self._devices.get(device_id)
            if current is None:
                logger.warning(f"Camera {device_id} not found for update")
                return False

            address = updates.get("address", current.address)
            channel = updates.get("channel", current.channel)
            clash = self._find_by_key(address, channel)
            if clash and clash.id != device_id:
                raise ValidationError(
                    f"A device is already registered at {address} channel {channel}",
                    field="channel",
                    value=channel,
                    details={"existingId": clash.id},
                )

            updated = current.copy()
            for key, value in updates.items():
                setattr(updated, key, value)
            updated.last_seen = utcnow()

            with self._transaction():
                # Reassigning an existing key keeps its position
                self._devices[device_id] = updated

        logger.info(f"Updated camera: {updated.name} ({device_id})")
        return True

    def set_status(self, device_id: str, status: DeviceStatus) -> bool:
        return self.update(device_id, {"status": status})

    def merge_candidates(self, candidates: Sequence[DeviceCandidate]) -> List[Device]:
        """
        Merge discovery candidates in the given order.

        A candidate whose (address, channel) is already registered is
        discarded; the existing entry wins and is not modified. The snapshot
        is written only when at least one device was added.

        Returns:
            The devices that were added
        """
        added: List[Device] = []
        with self._lock:
            with self._transaction(persist=lambda: bool(added)):
                keys: Dict[Tuple[str, int], str] = {d.dedup_key: d.id for d in self._devices.values()}
                for candidate in candidates:
                    if candidate.dedup_key in keys:
                        logger.debug(f"Camera already exists: {candidate.address}:{candidate.channel}")
                        continue
                    device = candidate.to_device()
                    self._devices[device.id] = device
                    keys[device.dedup_key] = device.id
                    added.append(device.copy())
                    logger.info(f"Added new camera: {device.name} ({device.address}:{device.channel})")

        return added

    def replace_sentinel(
        self,
        sentinel_id: str,
        channel_count: int,
        username: str,
        password: str,
        port: Optional[int] = None,
    ) -> List[Device]:
        """
        Complete setup of a DVR found by the subnet sweep.

        Creates one device per channel 1..channel_count at the sentinel's
        address (skipping channels that already exist) and removes the
        sentinel, persisting once.

        Raises:
            NotFoundError: Unknown sentinel id
            ValidationError: Device is not a sentinel or the count is out of range
        """
        if not 1 <= channel_count <= MAX_DVR_CHANNELS:
            raise ValidationError(
                f"Channel count must be between 1 and {MAX_DVR_CHANNELS}",
                field="channelCount",
                value=channel_count,
            )

        with self._lock:
            sentinel = self._devices.get(sentinel_id)
            if sentinel is None:
                raise NotFoundError("Camera", sentinel_id)
            if not sentinel.is_sentinel:
                raise ValidationError(
                    "Device does not need setup",
                    field="channel",
                    value=sentinel.channel,
                )

            rtsp_port = port or sentinel.port
            created: List[Device] = []
            with self._transaction():
                del self._devices[sentinel_id]
                for channel in range(1, channel_count + 1):
                    if self._find_by_key(sentinel.address, channel):
                        continue
                    candidate = DeviceCandidate(
                        method=DiscoveryMethod.MANUAL,
                        address=sentinel.address,
                        channel=channel,
                        port=rtsp_port,
                        name=f"Annke Camera {channel}",
                        stream_uri=build_channel_stream_uri(
                            sentinel.address, channel, username, password, rtsp_port
                        ),
                        manufacturer=sentinel.manufacturer,
                        model="DVR Channel",
                        status=DeviceStatus.ONLINE,
                    )
                    device = candidate.to_device()
                    self._devices[device.id] = device
                    created.append(device.copy())

        logger.info(
            f"Set up DVR at {sentinel.address}: added {len(created)} channels, removed placeholder {sentinel_id}"
        )
        return created

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _find_by_key(self, address: str, channel: int) -> Optional[Device]:
        for device in self._devices.values():
            if device.address == address and device.channel == channel:
                return device
        return None

    def _transaction(self, persist=None):
        return _SnapshotTransaction(self, persist)

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save(list(self._devices.values()))


class _SnapshotTransaction:
    """
    Wraps one mutation of the table: on success writes the snapshot, on a
    failed write restores the table as it was and re-raises.

    Must be entered with the registry lock held.
    """

    def __init__(self, registry: DeviceRegistry, persist=None):
        self._registry = registry
        self._persist_if = persist
        self._backup: Optional[Dict[str, Device]] = None

    def __enter__(self):
        self._backup = dict(self._registry._devices)
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self._registry._devices = self._backup
            return False
        if self._persist_if is not None and not self._persist_if():
            return False
        try:
            self._registry._persist()
        except PersistenceError:
            self._registry._devices = self._backup
            raise
        return False


# Global registry instance
_registry: Optional[DeviceRegistry] = None


def get_registry() -> DeviceRegistry:
    """Get or create the registry singleton backed by the snapshot store."""
    global _registry
    if _registry is None:
        from services.storage import get_snapshot_store
        _registry = DeviceRegistry(get_snapshot_store())
    return _registry
