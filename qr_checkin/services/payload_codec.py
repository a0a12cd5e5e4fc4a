# services/payload_codec.py
"""
Decoding of scanned QR payloads into candidate identities.
Accepts both JSON badges and plain-text codes. Name and device-id extraction are driven by
ordered rule tuples: the first rule that yields a value wins.
"""

import json
import logging


logger = logging.getLogger('payload_codec')


class CodecFallback:
    """How a payload that is not a JSON object is interpreted."""
    NAME = 'name'
    DEVICE_ID = 'device_id'

    ALL = (NAME, DEVICE_ID)


NAME_KEYS = (
    'name',
    'fullName',
    'studentName',
    'student_name',
    'ownerName',
    'owner',
    'userName',
    'username',
)

NAME_PART_KEYS = ('firstName', 'lastName')

DEVICE_ID_KEYS = (
    'deviceId',
    'deviceID',
    'device_id',
    'id',
    'device',
)


class CandidateIdentity:
    """Normalized result of decoding one scanned payload."""

    def __init__(self, name=None, device_id=None, metadata=None):
        self.name = name
        self.device_id = device_id
        self.metadata = metadata

    def to_dict(self):
        return {
            'name': self.name,
            'device_id': self.device_id,
            'metadata': self.metadata
        }

    def __eq__(self, other):
        if not isinstance(other, CandidateIdentity):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f'<CandidateIdentity name={self.name!r} device_id={self.device_id!r}>'


def _clean(value):
    """Trimmed string, or None for anything that is not a non-blank string."""
    if isinstance(value, str):
        value = value.strip()
        if value:
            return value
    return None


# Name rules

def _name_from_keys(data):
    for key in NAME_KEYS:
        if key in data:
            name = _clean(data[key])
            if name:
                return name
    return None


def _name_from_parts(data):
    parts = [_clean(data.get(key)) for key in NAME_PART_KEYS]
    combined = ' '.join(part for part in parts if part)
    return combined or None


NAME_RULES = (_name_from_keys, _name_from_parts)


# Device-id rules

def _device_id_from_keys(data):
    for key in DEVICE_ID_KEYS:
        if key not in data:
            continue
        value = data[key]
        device_id = _clean(value)
        if device_id:
            return device_id
        if isinstance(value, dict) and value.get('id') is not None:
            nested = str(value['id']).strip()
            if nested:
                return nested
    return None


def _device_id_from_any_id_key(data):
    for key, value in data.items():
        if 'id' in key.lower():
            device_id = _clean(value)
            if device_id:
                return device_id
    return None


def _device_id_from_payload(data):
    return json.dumps(data, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


DEVICE_ID_RULES = (_device_id_from_keys, _device_id_from_any_id_key, _device_id_from_payload)


def _first_match(rules, data):
    for rule in rules:
        value = rule(data)
        if value:
            return value
    return None


def _parse_object(text):
    try:
        parsed = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return parsed if isinstance(parsed, dict) else None


def decode(raw, fallback=CodecFallback.NAME):
    """
    Decode a scanned payload. Never raises; missing fields are None.

    Args:
        raw: Text produced by the QR decoder or typed by hand
        fallback: CodecFallback.NAME or CodecFallback.DEVICE_ID, applied when raw is not a JSON object

    Returns:
        CandidateIdentity: Decoded name, device id and the parsed object as metadata
    """
    if fallback not in CodecFallback.ALL:
        raise ValueError(f"Unknown codec fallback: {fallback}")

    text = raw if isinstance(raw, str) else ('' if raw is None else str(raw))
    text = text.strip()

    data = _parse_object(text)
    if data is None:
        value = text or None
        if fallback == CodecFallback.NAME:
            return CandidateIdentity(name=value)
        return CandidateIdentity(device_id=value)

    candidate = CandidateIdentity(
        name=_first_match(NAME_RULES, data),
        device_id=_first_match(DEVICE_ID_RULES, data),
        metadata=data
    )
    logger.debug(f"Decoded structured payload: {candidate}")
    return candidate


def build_badge_payload(name, device_id):
    """JSON text carried by an attendee's QR badge."""
    payload = {'name': (name or '').strip(), 'deviceId': device_id}
    return json.dumps(payload, separators=(',', ':'), ensure_ascii=False)
