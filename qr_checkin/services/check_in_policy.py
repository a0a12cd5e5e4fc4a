# services/check_in_policy.py
"""
Authorization gate in front of the attendance ledger.
Decides, from the session's mode and organizer lock and the acting device's self-check-in
flag, whether a check-in attempt may proceed.
"""

import hmac
import json
import logging

from qr_checkin.services.storage import StorageKeys


logger = logging.getLogger('check_in_policy')


class CheckInMode:
    """Who is doing the scanning."""
    ORGANIZER_SCAN = 'organizer_scan'
    SELF_CHECK_IN = 'self_check_in'

    DEFAULT = SELF_CHECK_IN
    ALL = (ORGANIZER_SCAN, SELF_CHECK_IN)


class DenyReason:
    LOCKED = 'locked'
    ALREADY_CHECKED_IN = 'already-checked-in'
    INVALID_PIN = 'invalid-pin'
    INVALID_MODE = 'invalid-mode'


class PolicyDecision:
    """Allow, or Deny with a reason."""

    def __init__(self, allowed, reason=None):
        self.allowed = allowed
        self.reason = reason

    @classmethod
    def allow(cls):
        return cls(True)

    @classmethod
    def deny(cls, reason):
        return cls(False, reason)

    def __bool__(self):
        return self.allowed

    def __repr__(self):
        return '<Allow>' if self.allowed else f'<Deny {self.reason}>'


class SessionState:
    """Mode, organizer lock and self-attempt flag for one check-in session."""

    def __init__(self, mode=CheckInMode.DEFAULT, unlocked=False, attempted=False):
        self.mode = mode
        self.unlocked = unlocked
        self.attempted = attempted

    def to_dict(self):
        return {
            'mode': self.mode,
            'unlocked': self.unlocked,
            'attempted': self.attempted
        }

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        mode = data.get('mode', CheckInMode.DEFAULT)
        if mode not in CheckInMode.ALL:
            mode = CheckInMode.DEFAULT
        return cls(
            mode=mode,
            unlocked=bool(data.get('unlocked', False)),
            attempted=bool(data.get('attempted', False))
        )

    def __repr__(self):
        return f'<SessionState mode={self.mode} unlocked={self.unlocked} attempted={self.attempted}>'


class CheckInPolicy:
    """State machine over (mode, lock, self-attempt flag)."""

    @staticmethod
    def authorize(state, acting_device_id=None):
        """
        Decide whether the acting device may attempt a check-in.

        Organizer scanning needs the lock open. Self-check-in is allowed once per device.
        """
        if state.mode == CheckInMode.ORGANIZER_SCAN:
            if state.unlocked:
                return PolicyDecision.allow()
            logger.warning(f"Organizer scan refused while locked (device {acting_device_id})")
            return PolicyDecision.deny(DenyReason.LOCKED)

        if state.attempted:
            logger.info(f"Self check-in refused, device {acting_device_id} already checked in")
            return PolicyDecision.deny(DenyReason.ALREADY_CHECKED_IN)
        return PolicyDecision.allow()

    @staticmethod
    def authorize_manual_entry(state, acting_device_id=None):
        """Manual entry is an organizer-only path, whatever the mode."""
        if state.unlocked:
            return PolicyDecision.allow()
        logger.warning(f"Manual entry refused while locked (device {acting_device_id})")
        return PolicyDecision.deny(DenyReason.LOCKED)

    @staticmethod
    def unlock(state, pin_input, expected_pin):
        """
        Open the organizer lock when the PIN matches exactly.

        The lock stays open until the session is reset; there is no re-lock transition.
        An empty configured PIN never unlocks.
        """
        if not expected_pin or pin_input is None:
            return PolicyDecision.deny(DenyReason.INVALID_PIN)

        if not hmac.compare_digest(str(pin_input).encode('utf-8'), str(expected_pin).encode('utf-8')):
            logger.warning("Organizer unlock failed: invalid PIN")
            return PolicyDecision.deny(DenyReason.INVALID_PIN)

        state.unlocked = True
        logger.info("Organizer lock opened")
        return PolicyDecision.allow()

    @staticmethod
    def set_mode(state, mode):
        """Switch mode; organizer scanning requires the lock to be open."""
        if mode not in CheckInMode.ALL:
            return PolicyDecision.deny(DenyReason.INVALID_MODE)
        if mode == CheckInMode.ORGANIZER_SCAN and not state.unlocked:
            return PolicyDecision.deny(DenyReason.LOCKED)

        state.mode = mode
        return PolicyDecision.allow()

    @staticmethod
    def effective_mode(state):
        """The session's mode, forced back to the default while the lock is closed."""
        if not state.unlocked:
            return CheckInMode.DEFAULT
        return state.mode

    @staticmethod
    def reset(state):
        """Re-engage the lock and return to the default mode."""
        state.mode = CheckInMode.DEFAULT
        state.unlocked = False
        state.attempted = False


class SelfAttemptRegistry:
    """Per-device self-check-in flags, stored as one JSON list under a single key."""

    def __init__(self, store):
        self.store = store

    def _read(self):
        raw = self.store.get(StorageKeys.SELF_ATTEMPT)
        if not raw:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed self-attempt flags: {e}")
            return set()

    def has_attempted(self, device_id):
        return (device_id or '') in self._read()

    def mark_attempted(self, device_id):
        devices = self._read()
        devices.add(device_id or '')
        self.store.set(StorageKeys.SELF_ATTEMPT, json.dumps(sorted(devices)))

    def reset(self):
        self.store.remove(StorageKeys.SELF_ATTEMPT)
