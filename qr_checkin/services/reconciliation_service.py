# services/reconciliation_service.py
"""
Check-in reconciliation: turns one scanned payload or typed name into an outcome.
Pipeline: burst debounce -> payload decode -> device duplicate short-circuit -> policy gate ->
self-check-in confirmation or ledger submission.
"""

import logging
import threading
import time
from datetime import datetime

from qr_checkin.services.check_in_policy import (
    CheckInMode, CheckInPolicy, DenyReason, PolicyDecision, SelfAttemptRegistry
)
from qr_checkin.services.identity_service import AttendeeProfile, IdentityStore
from qr_checkin.services.ledger import (
    AttendanceLedger, CheckInMethod, DedupKey, Outcome, OutcomeStatus
)
from qr_checkin.services.payload_codec import CandidateIdentity, CodecFallback, decode
from qr_checkin.services.storage import MemoryKeyValueStore, build_store


logger = logging.getLogger('reconciliation_service')

DEFAULT_DEBOUNCE_MS = 1500


class Debouncer:
    """
    Drops a payload identical to the last accepted one from the same device inside the window.
    Each scanning device keeps its own last payload and time.
    """

    def __init__(self, window_ms=DEFAULT_DEBOUNCE_MS, clock=None):
        self.window_ms = window_ms
        self.clock = clock or time.monotonic
        self._last = {}
        self._lock = threading.Lock()

    def should_discard(self, raw, source=None):
        now = self.clock()
        source = source or ''
        with self._lock:
            last_raw, last_seen = self._last.get(source, (None, None))
            if last_raw == raw and last_seen is not None and (now - last_seen) * 1000 < self.window_ms:
                return True

            self._last[source] = (raw, now)
            return False

    def reset(self):
        with self._lock:
            self._last.clear()


class ReconciliationEngine:
    """Owns the ledger, device identity and self-attempt flags of one check-in station."""

    def __init__(self, store=None, dedup_key=DedupKey.NAME, scan_fallback=CodecFallback.NAME,
                 organizer_pin='', debounce_ms=DEFAULT_DEBOUNCE_MS, clock=None, monotonic=None):
        self.configure(
            store=store if store is not None else MemoryKeyValueStore(),
            dedup_key=dedup_key,
            scan_fallback=scan_fallback,
            organizer_pin=organizer_pin,
            debounce_ms=debounce_ms,
            clock=clock,
            monotonic=monotonic
        )

    def init_app(self, app):
        """Bind the engine to application configuration."""
        store = build_store(
            backend=app.config.get('CHECKIN_STORAGE', 'database'),
            prefix=app.config.get('CHECKIN_STORAGE_PREFIX', 'qratt:')
        )
        self.configure(
            store=store,
            dedup_key=app.config.get('CHECKIN_DEDUP_KEY', DedupKey.NAME),
            scan_fallback=app.config.get('CHECKIN_SCAN_FALLBACK', CodecFallback.NAME),
            organizer_pin=app.config.get('CHECKIN_ORGANIZER_PIN', ''),
            debounce_ms=app.config.get('CHECKIN_DEBOUNCE_MS', DEFAULT_DEBOUNCE_MS)
        )
        app.extensions['reconciliation_engine'] = self
        app.logger.info(f"Check-in engine ready: dedup by {self.ledger.dedup_key}, "
                        f"scan fallback {self.scan_fallback}, debounce {self.debouncer.window_ms}ms")

    def configure(self, store, dedup_key=DedupKey.NAME, scan_fallback=CodecFallback.NAME,
                  organizer_pin='', debounce_ms=DEFAULT_DEBOUNCE_MS, clock=None, monotonic=None):
        if scan_fallback not in CodecFallback.ALL:
            raise ValueError(f"Unknown codec fallback: {scan_fallback}")

        self.store = store
        self.scan_fallback = scan_fallback
        self.organizer_pin = organizer_pin or ''
        self.identity = IdentityStore(store)
        self.profile = AttendeeProfile(store)
        self.attempts = SelfAttemptRegistry(store)
        self.ledger = AttendanceLedger(store, dedup_key=dedup_key, clock=clock or datetime.now)
        self.debouncer = Debouncer(debounce_ms, clock=monotonic)

    def device_id(self):
        return self.identity.get_or_create()

    def handle_scan(self, raw, state, acting_device_id=None):
        """
        Handle one decoded QR payload.

        Args:
            raw: Text delivered by the scanner
            state: SessionState of the scanning session, updated in place
            acting_device_id: Device performing the scan

        Returns:
            Outcome, or None when the payload repeats the previous one inside the debounce window
        """
        if self.debouncer.should_discard(raw, acting_device_id):
            logger.debug(f"Repeated scan from device {acting_device_id} discarded")
            return None

        candidate = decode(raw, self.scan_fallback)

        if self.ledger.dedup_key == DedupKey.DEVICE_ID and candidate.device_id:
            existing = self.ledger.find_duplicate_device(candidate.device_id)
            if existing:
                logger.info(f"Duplicate device ignored: {candidate.device_id}")
                return Outcome(OutcomeStatus.DUPLICATE_DEVICE, candidate=candidate, existing=existing)

        if not state.attempted and self.attempts.has_attempted(acting_device_id):
            state.attempted = True

        decision = CheckInPolicy.authorize(state, acting_device_id)
        if not decision:
            return Outcome(OutcomeStatus.UNAUTHORIZED, reason=decision.reason, candidate=candidate)

        if state.mode == CheckInMode.SELF_CHECK_IN:
            state.attempted = True
            self.attempts.mark_attempted(acting_device_id)
            logger.info(f"Self check-in confirmed for device {acting_device_id}")
            return Outcome(OutcomeStatus.SELF_CONFIRMED, candidate=candidate)

        return self.ledger.submit(candidate, acting_device_id, CheckInMethod.QR_CODE)

    def handle_manual_entry(self, name, state, acting_device_id=None):
        """Organizer types a name. Refused while the lock is closed, in any mode."""
        candidate = CandidateIdentity(
            name=(name or '').strip() or None,
            device_id=acting_device_id or None
        )

        decision = CheckInPolicy.authorize_manual_entry(state, acting_device_id)
        if not decision:
            return Outcome(OutcomeStatus.UNAUTHORIZED, reason=decision.reason, candidate=candidate)

        return self.ledger.submit(candidate, acting_device_id, CheckInMethod.MANUAL)

    def unlock(self, state, pin_input):
        return CheckInPolicy.unlock(state, pin_input, self.organizer_pin)

    def set_mode(self, state, mode):
        return CheckInPolicy.set_mode(state, mode)

    def records(self):
        return self.ledger.list_descending()

    def export_rows(self):
        return self.ledger.export_rows()

    def remove_record(self, state, device_id):
        """
        Remove a device's records from the roster.

        Returns:
            tuple: (PolicyDecision, number of records removed)
        """
        if not state.unlocked:
            return PolicyDecision.deny(DenyReason.LOCKED), 0
        return PolicyDecision.allow(), self.ledger.remove(device_id)

    def clear_all(self, state):
        """
        Full reset: empty the roster, forget self-check-in flags, regenerate this device's
        identity and re-engage the organizer lock.

        Returns:
            tuple: (PolicyDecision, new device id or None when refused)
        """
        if not state.unlocked:
            return PolicyDecision.deny(DenyReason.LOCKED), None

        self.ledger.clear()
        self.attempts.reset()
        self.debouncer.reset()
        device_id = self.identity.reset()
        CheckInPolicy.reset(state)

        logger.info(f"Station reset, new device identity {device_id}")
        return PolicyDecision.allow(), device_id
