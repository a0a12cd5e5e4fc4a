# services/ledger.py
"""
Attendance ledger: the append-only, de-duplicated roster of admitted attendees.
De-duplication is keyed either on the attendee name (case and accent insensitive) or on the
scanned device id, chosen when the ledger is built. The roster is persisted as one versioned
JSON snapshot that is rewritten whole on every change.
"""

import json
import logging
import unicodedata
from datetime import datetime

from qr_checkin.services.storage import StorageKeys


logger = logging.getLogger('ledger')

SNAPSHOT_VERSION = 1


class DedupKey:
    """Field used to detect a repeated check-in."""
    NAME = 'name'
    DEVICE_ID = 'device_id'

    ALL = (NAME, DEVICE_ID)


class CheckInMethod:
    QR_CODE = 'qr_code'
    MANUAL = 'manual'


class OutcomeStatus:
    """Result of handling one scan or manual entry."""
    ACCEPTED = 'accepted'
    SELF_CONFIRMED = 'self_confirmed'
    DUPLICATE_NAME = 'duplicate_name'
    DUPLICATE_DEVICE = 'duplicate_device'
    INVALID_NAME = 'invalid_name'
    INVALID_PAYLOAD = 'invalid_payload'
    UNAUTHORIZED = 'unauthorized'

    SUCCESSFUL = (ACCEPTED, SELF_CONFIRMED)
    DUPLICATES = (DUPLICATE_NAME, DUPLICATE_DEVICE)
    INVALID = (INVALID_NAME, INVALID_PAYLOAD)


# Letters whose marks do not decompose into combining characters
LETTER_FOLDS = str.maketrans({
    'ø': 'o',
    'ł': 'l',
    'đ': 'd',
    'ð': 'd',
    'ħ': 'h',
    'ŧ': 't',
    'ı': 'i',
    'þ': 'th',
    'æ': 'ae',
    'œ': 'oe',
})


class SnapshotError(ValueError):
    """Raised when a stored ledger snapshot cannot be read."""


def name_key(name):
    """Comparison key for names: accents stripped, case folded, whitespace collapsed."""
    decomposed = unicodedata.normalize('NFKD', name.casefold())
    stripped = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return ' '.join(stripped.translate(LETTER_FOLDS).split())


class AttendanceRecord:
    """One admitted check-in. Treated as immutable once created."""

    __slots__ = ('name', 'device_id', 'timestamp', 'check_in_method')

    def __init__(self, name, device_id, timestamp, check_in_method=CheckInMethod.QR_CODE):
        self.name = name
        self.device_id = device_id
        self.timestamp = timestamp
        self.check_in_method = check_in_method

    def to_dict(self):
        return {
            'name': self.name,
            'device_id': self.device_id,
            'timestamp': self.timestamp.isoformat(),
            'check_in_method': self.check_in_method
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data['name'], str):
            raise TypeError(f"Record name must be text, got {type(data['name']).__name__}")
        return cls(
            name=data['name'],
            device_id=data.get('device_id') or '',
            timestamp=datetime.fromisoformat(data['timestamp']),
            check_in_method=data.get('check_in_method', CheckInMethod.QR_CODE)
        )

    def __eq__(self, other):
        if not isinstance(other, AttendanceRecord):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f'<AttendanceRecord {self.name} ({self.device_id}) at {self.timestamp.isoformat()}>'


class Outcome:
    """Outcome of a ledger submission or of the full reconciliation pipeline."""

    MESSAGES = {
        OutcomeStatus.ACCEPTED: 'Saved',
        OutcomeStatus.SELF_CONFIRMED: 'Check-in confirmed on this device',
        OutcomeStatus.DUPLICATE_NAME: 'Duplicate ignored: name already checked in',
        OutcomeStatus.DUPLICATE_DEVICE: 'Duplicate ignored: device already checked in',
        OutcomeStatus.INVALID_NAME: 'No name found',
        OutcomeStatus.INVALID_PAYLOAD: 'No device id found in QR',
        OutcomeStatus.UNAUTHORIZED: 'Not allowed'
    }

    def __init__(self, status, reason=None, record=None, candidate=None, existing=None):
        self.status = status
        self.reason = reason
        self.record = record
        self.candidate = candidate
        self.existing = existing

    @property
    def success(self):
        return self.status in OutcomeStatus.SUCCESSFUL

    @property
    def message(self):
        message = self.MESSAGES.get(self.status, self.status)
        if self.status == OutcomeStatus.ACCEPTED and self.record:
            return f"{message}: {self.record.name}"
        if self.status == OutcomeStatus.UNAUTHORIZED and self.reason:
            return f"{message}: {self.reason}"
        return message

    def to_dict(self):
        result = {
            'success': self.success,
            'status': self.status,
            'message': self.message
        }
        if self.reason:
            result['reason'] = self.reason
        if self.record:
            result['record'] = self.record.to_dict()
        if self.existing:
            result['existing_record'] = self.existing.to_dict()
        if self.candidate:
            result['candidate'] = self.candidate.to_dict()
        return result

    def __repr__(self):
        return f'<Outcome {self.status} reason={self.reason!r}>'


def serialize_records(records):
    return json.dumps({
        'version': SNAPSHOT_VERSION,
        'records': [record.to_dict() for record in records]
    })


def _legacy_record(item):
    """Unversioned entry: {deviceId, name, scannedAt (epoch ms)}."""
    device_id = str(item['deviceId'])
    return AttendanceRecord(
        name=(item.get('name') or '').strip() or device_id,
        device_id=device_id,
        timestamp=datetime.fromtimestamp(item['scannedAt'] / 1000),
        check_in_method=CheckInMethod.QR_CODE
    )


def _parse_items(items, parse):
    records = []
    for item in items:
        try:
            records.append(parse(item))
        except (ValueError, KeyError, TypeError, AttributeError, OverflowError, OSError) as e:
            logger.warning(f"Skipping malformed ledger record {str(item)[:80]}: {e}")
    return records


def deserialize_records(text):
    """
    Parse a stored snapshot, skipping individual malformed records.

    Accepts the versioned format and the unversioned newest-first list.

    Returns:
        list: AttendanceRecord instances in insertion order

    Raises:
        SnapshotError: If the snapshot as a whole is not readable
    """
    if not text:
        return []

    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise SnapshotError(f"Ledger snapshot is not JSON: {e}") from e

    if isinstance(data, list):
        return _parse_items(reversed(data), _legacy_record)

    if isinstance(data, dict) and data.get('version') == SNAPSHOT_VERSION:
        items = data.get('records', [])
        if not isinstance(items, list):
            raise SnapshotError("Ledger snapshot records are not a list")
        return _parse_items(items, AttendanceRecord.from_dict)

    version = data.get('version') if isinstance(data, dict) else None
    raise SnapshotError(f"Unsupported ledger snapshot version: {version!r}")


class AttendanceLedger:
    """De-duplicated attendance roster, optionally persisted in a key-value store."""

    def __init__(self, store=None, dedup_key=DedupKey.NAME, clock=None):
        if dedup_key not in DedupKey.ALL:
            raise ValueError(f"Unknown de-duplication key: {dedup_key}")

        self.store = store
        self.dedup_key = dedup_key
        self.clock = clock or datetime.now
        self._records = []
        self._unreadable = None

    def _read(self):
        if self.store is not None:
            text = self.store.get(StorageKeys.SCANS)
            try:
                self._records = deserialize_records(text)
                self._unreadable = None
            except SnapshotError as e:
                logger.error(f"{e}; roster reads as empty until the next write moves it aside")
                self._records = []
                self._unreadable = text
        return list(self._records)

    def _write(self, records):
        self._records = list(records)
        if self.store is None:
            return

        # An unreadable snapshot is kept under its own key rather than overwritten
        if self._unreadable is not None:
            self.store.set(StorageKeys.SCANS_UNREADABLE, self._unreadable)
            logger.warning(f"Unreadable ledger snapshot moved to '{StorageKeys.SCANS_UNREADABLE}'")
            self._unreadable = None
        self.store.set(StorageKeys.SCANS, serialize_records(self._records))

    def find_duplicate_device(self, device_id, records=None):
        """Existing record for device_id, or None."""
        if not device_id:
            return None
        records = self._read() if records is None else records
        for record in records:
            if record.device_id == device_id:
                return record
        return None

    def find_duplicate_name(self, name, records=None):
        """Existing record whose name matches ignoring case and accents, or None."""
        key = name_key(name)
        records = self._read() if records is None else records
        for record in records:
            if name_key(record.name) == key:
                return record
        return None

    def submit(self, candidate, acting_device_id, check_in_method=CheckInMethod.QR_CODE):
        """
        Admit a candidate unless it is invalid or a duplicate.

        Args:
            candidate: CandidateIdentity from the payload codec or a manual entry
            acting_device_id: Device performing the check-in, used when the candidate has none
            check_in_method: CheckInMethod value stored on the record

        Returns:
            Outcome: accepted with the new record, or the rejection
        """
        records = self._read()
        name = (candidate.name or '').strip()

        if self.dedup_key == DedupKey.DEVICE_ID:
            device_id = (candidate.device_id or '').strip()
            if not device_id:
                return Outcome(OutcomeStatus.INVALID_PAYLOAD, candidate=candidate)

            existing = self.find_duplicate_device(device_id, records)
            if existing:
                logger.info(f"Duplicate device ignored: {device_id}")
                return Outcome(OutcomeStatus.DUPLICATE_DEVICE, candidate=candidate, existing=existing)

            name = name or device_id

        else:
            if not name:
                return Outcome(OutcomeStatus.INVALID_NAME, candidate=candidate)

            existing = self.find_duplicate_name(name, records)
            if existing:
                logger.info(f"Duplicate name ignored: {name}")
                return Outcome(OutcomeStatus.DUPLICATE_NAME, candidate=candidate, existing=existing)

            device_id = candidate.device_id or acting_device_id or ''

        record = AttendanceRecord(
            name=name,
            device_id=device_id,
            timestamp=self.clock(),
            check_in_method=check_in_method
        )
        records.append(record)
        self._write(records)

        logger.info(f"Attendance recorded: {record.name} ({record.device_id}) via {check_in_method}")
        return Outcome(OutcomeStatus.ACCEPTED, record=record, candidate=candidate)

    def list_descending(self):
        """Records newest first; equal timestamps keep most-recent-insert first."""
        return sorted(reversed(self._read()), key=lambda record: record.timestamp, reverse=True)

    def export_rows(self):
        """Read-only snapshot for export consumers."""
        return [
            {
                'name': record.name,
                'device_id': record.device_id,
                'timestamp': record.timestamp.isoformat()
            }
            for record in self.list_descending()
        ]

    def remove(self, device_id):
        """Remove every record for device_id. Returns the number removed."""
        records = self._read()
        kept = [record for record in records if record.device_id != device_id]
        removed = len(records) - len(kept)
        if removed:
            self._write(kept)
            logger.info(f"Removed {removed} record(s) for device {device_id}")
        return removed

    def clear(self):
        """Empty the ledger. Device identity and self-attempt flags are untouched."""
        self._read()
        self._write([])
        logger.info("Ledger cleared")

    def __len__(self):
        return len(self._read())
