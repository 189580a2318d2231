"""
Pytest configuration and fixtures for DVR Bridge tests.
"""

import pytest
import sys
from pathlib import Path

# Add backend to path for imports
backend_path = Path(__file__).parent.parent / "backend"
sys.path.insert(0, str(backend_path))


@pytest.fixture
def snapshot_store(tmp_path):
    """File-backed SQLite snapshot store in a temp directory."""
    from services.storage import SnapshotStore

    store = SnapshotStore(f"sqlite:///{tmp_path / 'cameras.db'}")
    yield store
    store.close()


@pytest.fixture
def registry(snapshot_store):
    """Empty registry persisting to the temp store."""
    from services.registry import DeviceRegistry

    return DeviceRegistry(snapshot_store)


@pytest.fixture
def make_device():
    """Factory for registry devices."""
    from models import Device, DeviceStatus

    def _make(device_id="cam-1", address="10.0.0.5", channel=1, **kwargs):
        defaults = {
            "name": f"Camera {address}",
            "stream_uri": f"rtsp://admin:@{address}:554/Streaming/Channels/{max(channel, 1)}01",
            "status": DeviceStatus.ONLINE,
        }
        defaults.update(kwargs)
        return Device(id=device_id, address=address, channel=channel, **defaults)

    return _make


@pytest.fixture
def make_candidate():
    """Factory for discovery candidates."""
    from models import DeviceCandidate, DiscoveryMethod

    def _make(address="10.0.0.5", channel=1, method=DiscoveryMethod.SADP, **kwargs):
        defaults = {
            "port": 554,
            "name": f"Camera {address}",
            "stream_uri": f"rtsp://admin:@{address}:554/Streaming/Channels/{max(channel, 1)}01",
        }
        defaults.update(kwargs)
        return DeviceCandidate(method=method, address=address, channel=channel, **defaults)

    return _make


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    from config import Settings

    return Settings(
        _env_file=None,
        dvr_ip=None,
        auto_discover=False,
        secret_key="test-secret-key-for-unit-tests-only-32chars",
        token_ttl_seconds=60,
        teardown_on_disconnect=False,
    )
