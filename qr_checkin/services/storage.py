# services/storage.py
"""
Key-value persistence for the check-in station.
Every write replaces the whole value stored under a key; there are no partial updates.
The database store raises StorageUnavailable on failure, and the fallback store turns that
into in-memory operation for the rest of the process.
"""

import logging
import threading

from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger('storage')


class StorageUnavailable(Exception):
    """Raised when the persistence backend cannot be reached."""


class StorageKeys:
    """Keys used under the configured storage prefix."""
    DEVICE_ID = 'device_id'
    SCANS = 'scans'
    SCANS_UNREADABLE = 'scans.unreadable'
    SELF_ATTEMPT = 'self_attempt'
    STUDENT_NAME = 'student:name'

    @staticmethod
    def student_name(device_id):
        """Attendee name key for one device."""
        return f"{StorageKeys.STUDENT_NAME}:{device_id or ''}"


class KeyValueStore:
    """Interface of the persistence collaborator."""

    def get(self, key):
        raise NotImplementedError

    def set(self, key, value):
        raise NotImplementedError

    def remove(self, key):
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store, used in tests and when the database is unavailable."""

    def __init__(self, initial=None):
        self._values = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._values.get(key)

    def set(self, key, value):
        with self._lock:
            self._values[key] = str(value)

    def remove(self, key):
        with self._lock:
            self._values.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._values)


class DatabaseKeyValueStore(KeyValueStore):
    """Store backed by the StoredValue table. Requires an application context."""

    def get(self, key):
        from qr_checkin.extensions import db
        from qr_checkin.models import StoredValue

        try:
            return StoredValue.get_value(key)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageUnavailable(f"Could not read '{key}': {e}") from e

    def set(self, key, value):
        from qr_checkin.extensions import db
        from qr_checkin.models import StoredValue

        try:
            StoredValue.set_value(key, str(value))
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageUnavailable(f"Could not write '{key}': {e}") from e

    def remove(self, key):
        from qr_checkin.extensions import db
        from qr_checkin.models import StoredValue

        try:
            StoredValue.remove_value(key)
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageUnavailable(f"Could not remove '{key}': {e}") from e


class FallbackKeyValueStore(KeyValueStore):
    """
    Wraps a primary store and degrades to memory on the first StorageUnavailable.

    Every value read from or written to the primary is mirrored in memory, so after a
    failure the station carries on from the last values it saw. Once degraded, the store
    stays in memory until the process restarts.
    """

    def __init__(self, primary, fallback=None):
        self.primary = primary
        self.fallback = fallback or MemoryKeyValueStore()
        self.degraded = False

    @property
    def mode(self):
        return 'memory' if self.degraded else 'primary'

    def _degrade(self, error):
        logger.warning(f"Storage unavailable, continuing in memory for this session: {error}")
        self.degraded = True

    def get(self, key):
        if not self.degraded:
            try:
                value = self.primary.get(key)
            except StorageUnavailable as e:
                self._degrade(e)
            else:
                if value is None:
                    self.fallback.remove(key)
                else:
                    self.fallback.set(key, value)
                return value
        return self.fallback.get(key)

    def set(self, key, value):
        if not self.degraded:
            try:
                self.primary.set(key, value)
            except StorageUnavailable as e:
                self._degrade(e)
        self.fallback.set(key, value)

    def remove(self, key):
        if not self.degraded:
            try:
                self.primary.remove(key)
            except StorageUnavailable as e:
                self._degrade(e)
        self.fallback.remove(key)


class PrefixedKeyValueStore(KeyValueStore):
    """Namespaces every key with a fixed prefix."""

    def __init__(self, store, prefix):
        self.store = store
        self.prefix = prefix or ''

    def _key(self, key):
        return f"{self.prefix}{key}"

    def get(self, key):
        return self.store.get(self._key(key))

    def set(self, key, value):
        return self.store.set(self._key(key), value)

    def remove(self, key):
        return self.store.remove(self._key(key))


def build_store(backend='database', prefix='qratt:'):
    """
    Build the station's store from configuration.

    Args:
        backend: 'database' or 'memory'
        prefix: Key namespace

    Returns:
        KeyValueStore: Prefixed store, degrading to memory when the database fails
    """
    if backend == 'memory':
        base = MemoryKeyValueStore()
    elif backend == 'database':
        base = FallbackKeyValueStore(DatabaseKeyValueStore())
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    return PrefixedKeyValueStore(base, prefix)


def storage_mode(store):
    """Describe where values currently live, for health reporting."""
    inner = getattr(store, 'store', store)
    if isinstance(inner, FallbackKeyValueStore):
        return 'database' if not inner.degraded else 'memory (degraded)'
    if isinstance(inner, MemoryKeyValueStore):
        return 'memory'
    return 'database'
