# services/identity_service.py
"""
Device identity for this station or attendee browser.
The identity is created lazily on first need, persisted, and only regenerated by an explicit reset.
"""

import logging
import secrets
import time
import uuid

from qr_checkin.services.payload_codec import build_badge_payload
from qr_checkin.services.storage import StorageKeys, StorageUnavailable


logger = logging.getLogger('identity_service')

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def _random_suffix(length=8):
    return ''.join(secrets.choice(_BASE36) for _ in range(length))


def generate_device_id():
    """Random UUID, or time plus random suffix when no secure source is available."""
    try:
        return str(uuid.uuid4())
    except (NotImplementedError, OSError) as e:
        logger.warning(f"Secure random source unavailable, using time-based device id: {e}")
        return f"{int(time.time() * 1000)}-{_random_suffix()}"


class IdentityStore:
    """Owns the persisted device id."""

    def __init__(self, store, generator=None):
        self.store = store
        self.generator = generator or generate_device_id

    def get_or_create(self):
        """
        Return the persisted device id, creating and storing one if missing.

        Returns:
            str: Device id, or '' when the store cannot be reached (caller treats as unidentified)
        """
        try:
            existing = self.store.get(StorageKeys.DEVICE_ID)
            if existing:
                return existing

            device_id = self.generator()
            self.store.set(StorageKeys.DEVICE_ID, device_id)
            logger.info(f"Created device identity {device_id}")
            return device_id

        except StorageUnavailable as e:
            logger.error(f"Device identity unavailable: {e}")
            return ''

    def reset(self):
        """Delete the persisted device id and create a new one immediately."""
        try:
            self.store.remove(StorageKeys.DEVICE_ID)
        except StorageUnavailable as e:
            logger.error(f"Could not remove device identity: {e}")
            return ''

        return self.get_or_create()


class AttendeeProfile:
    """Names attendees have typed on their own devices, and the badge payloads built from them."""

    def __init__(self, store):
        self.store = store

    def get_name(self, device_id):
        try:
            return self.store.get(StorageKeys.student_name(device_id)) or ''
        except StorageUnavailable as e:
            logger.error(f"Attendee name unavailable for device {device_id}: {e}")
            return ''

    def set_name(self, device_id, name):
        name = (name or '').strip()
        self.store.set(StorageKeys.student_name(device_id), name)
        return name

    def badge(self, device_id):
        """Badge fields for the attendee page; payload is None until this device has a name."""
        name = self.get_name(device_id)
        return {
            'name': name,
            'device_id': device_id,
            'payload': build_badge_payload(name, device_id) if name else None
        }
