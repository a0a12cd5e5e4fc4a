# routes/check_in.py
"""
Check-in routes for QR code scanning and manual name entry.
The scanner front end posts every decoded payload here; the organizer unlocks with a PIN,
switches modes, reviews the roster and exports it.
"""

import logging
from datetime import datetime

from flask import Blueprint, request, jsonify, current_app, session as flask_session

from qr_checkin.extensions import check_in_service
from qr_checkin.services.check_in_policy import CheckInPolicy, SessionState
from qr_checkin.services.ledger import OutcomeStatus

# Initialize blueprint
check_in_bp = Blueprint('check_in', __name__)

logger = logging.getLogger('check_in')

STATE_KEY = 'check_in_state'
DEVICE_HEADER = 'X-Device-Id'

HTTP_STATUS = {
    OutcomeStatus.ACCEPTED: 200,
    OutcomeStatus.SELF_CONFIRMED: 200,
    OutcomeStatus.DUPLICATE_NAME: 409,
    OutcomeStatus.DUPLICATE_DEVICE: 409,
    OutcomeStatus.INVALID_NAME: 422,
    OutcomeStatus.INVALID_PAYLOAD: 422,
    OutcomeStatus.UNAUTHORIZED: 403
}


@check_in_bp.route('/state')
def state():
    """Current mode, lock, device identity and recent scans for the scanner page."""
    try:
        session_state = _load_state()
        return jsonify({
            'success': True,
            'state': session_state.to_dict(),
            'device_id': _acting_device_id(),
            'status_message': flask_session.get('status_message', 'Align a QR code within the frame'),
            'recent_scans': flask_session.get('recent_scans', []),
            'record_count': len(check_in_service.ledger)
        })

    except Exception as e:
        logger.error(f"Error loading check-in state: {str(e)}", exc_info=True)
        return _server_error('Error loading check-in state')


@check_in_bp.route('/scan', methods=['POST'])
def scan():
    """
    Handle one decoded QR payload.
    Accepts {"raw": "..."} or the scanner's {"qr_data": "..."}.
    """
    try:
        data = request.get_json(silent=True) or {}
        raw = data.get('raw', data.get('qr_data'))
        if raw is None:
            return jsonify({
                'success': False,
                'message': 'No scan data provided',
                'error_code': 'missing_data'
            }), 400

        session_state = _load_state()
        acting_device_id = _acting_device_id()

        outcome = check_in_service.handle_scan(raw, session_state, acting_device_id)
        _save_state(session_state)

        if outcome is None:
            return jsonify({
                'success': True,
                'status': 'debounced',
                'message': 'Repeated scan ignored'
            }), 202

        return _outcome_response(outcome, method='qr_code')

    except Exception as e:
        logger.error(f"Error during scan reconciliation: {str(e)}", exc_info=True)
        return _server_error('Server error during check-in')


@check_in_bp.route('/manual', methods=['POST'])
def manual_entry():
    """Organizer types an attendee name."""
    try:
        data = request.get_json(silent=True) or {}
        name = data.get('name')
        if not isinstance(name, str):
            return jsonify({
                'success': False,
                'message': 'Name is required',
                'error_code': 'missing_name'
            }), 400

        session_state = _load_state()
        outcome = check_in_service.handle_manual_entry(name, session_state, _acting_device_id())
        _save_state(session_state)

        return _outcome_response(outcome, method='manual')

    except Exception as e:
        logger.error(f"Error during manual entry: {str(e)}", exc_info=True)
        return _server_error('Server error during manual entry')


@check_in_bp.route('/unlock', methods=['POST'])
def unlock():
    """Open the organizer lock with the configured PIN."""
    data = request.get_json(silent=True) or {}
    session_state = _load_state()

    decision = check_in_service.unlock(session_state, data.get('pin'))
    if not decision:
        return jsonify({
            'success': False,
            'message': 'Invalid PIN',
            'error_code': decision.reason
        }), 401

    _save_state(session_state)
    return jsonify({
        'success': True,
        'message': 'Organizer mode unlocked',
        'state': session_state.to_dict()
    })


@check_in_bp.route('/mode', methods=['POST'])
def set_mode():
    """Switch between organizer scanning and self check-in."""
    data = request.get_json(silent=True) or {}
    session_state = _load_state()

    decision = check_in_service.set_mode(session_state, data.get('mode'))
    if not decision:
        status_code = 400 if decision.reason == 'invalid-mode' else 403
        return jsonify({
            'success': False,
            'message': f'Mode change refused: {decision.reason}',
            'error_code': decision.reason
        }), status_code

    _save_state(session_state)
    return jsonify({
        'success': True,
        'message': f'Mode set to {session_state.mode}',
        'state': session_state.to_dict()
    })


@check_in_bp.route('/records')
def records():
    """Roster, newest first."""
    try:
        rows = [record.to_dict() for record in check_in_service.records()]
        return jsonify({'success': True, 'count': len(rows), 'records': rows})

    except Exception as e:
        logger.error(f"Error listing records: {str(e)}", exc_info=True)
        return _server_error('Error retrieving records')


@check_in_bp.route('/records/<path:device_id>', methods=['DELETE'])
def remove_record(device_id):
    """Remove a device's entries from the roster. Organizer only."""
    session_state = _load_state()
    decision, removed = check_in_service.remove_record(session_state, device_id)
    if not decision:
        return jsonify({
            'success': False,
            'message': 'Organizer lock is engaged',
            'error_code': decision.reason
        }), 403

    if not removed:
        return jsonify({
            'success': False,
            'message': f'No records for device {device_id}',
            'error_code': 'record_not_found'
        }), 404

    return jsonify({'success': True, 'message': f'Removed {removed} record(s)', 'removed': removed})


@check_in_bp.route('/reset', methods=['POST'])
def reset():
    """Clear all: roster, self check-in flags and device identity. Re-engages the lock."""
    session_state = _load_state()
    decision, device_id = check_in_service.clear_all(session_state)
    if not decision:
        return jsonify({
            'success': False,
            'message': 'Organizer lock is engaged',
            'error_code': decision.reason
        }), 403

    _save_state(session_state)
    flask_session['recent_scans'] = []
    flask_session['status_message'] = 'All scans cleared'

    return jsonify({
        'success': True,
        'message': 'All scans cleared',
        'device_id': device_id,
        'state': session_state.to_dict()
    })


@check_in_bp.route('/export')
def export():
    """Read-only roster snapshot for spreadsheet/PDF exporters."""
    try:
        rows = check_in_service.export_rows()
        return jsonify({
            'success': True,
            'generated_at': datetime.now().isoformat(),
            'columns': ['name', 'device_id', 'timestamp'],
            'rows': rows
        })

    except Exception as e:
        logger.error(f"Error exporting records: {str(e)}", exc_info=True)
        return _server_error('Error exporting records')


@check_in_bp.route('/camera-error', methods=['POST'])
def camera_error():
    """Scanner reports a camera failure; shown to the user, never retried."""
    data = request.get_json(silent=True) or {}
    message = (data.get('message') or '').strip() or 'Camera error while scanning'

    flask_session['status_message'] = message
    logger.warning(f"Camera error reported: {message}")
    return jsonify({'success': True, 'status_message': message})


# Helper Functions

def _load_state():
    """Session state from the signed session cookie; locked sessions use the default mode."""
    session_state = SessionState.from_dict(flask_session.get(STATE_KEY))
    session_state.mode = CheckInPolicy.effective_mode(session_state)
    return session_state


def _save_state(session_state):
    flask_session[STATE_KEY] = session_state.to_dict()
    flask_session.permanent = True


def _acting_device_id():
    """Device id sent by the client, else this station's own identity."""
    header_value = (request.headers.get(DEVICE_HEADER) or '').strip()
    return header_value or check_in_service.device_id()


def _outcome_response(outcome, method):
    result = outcome.to_dict()
    if not outcome.success:
        result['error_code'] = outcome.reason if outcome.reason else outcome.status

    _update_recent_scans(outcome, method)
    flask_session['status_message'] = result['message']

    return jsonify(result), HTTP_STATUS.get(outcome.status, 200)


def _update_recent_scans(outcome, method):
    """
    Update recent scans in flask session for UI display.
    """
    try:
        recent_scans = flask_session.get('recent_scans', [])

        candidate = outcome.candidate
        name = None
        if outcome.record:
            name = outcome.record.name
        elif candidate:
            name = candidate.name or candidate.device_id

        scan_entry = {
            'timestamp': datetime.now().strftime('%H:%M:%S'),
            'name': name or 'Unknown',
            'method': method,
            'status': outcome.status,
            'message': outcome.message
        }

        # Add to beginning of list and limit
        recent_scans.insert(0, scan_entry)
        recent_scans = recent_scans[:current_app.config.get('RECENT_SCANS_LIMIT', 10)]

        flask_session['recent_scans'] = recent_scans
        flask_session.modified = True

    except Exception as e:
        logger.error(f"Error updating recent scans: {str(e)}")


def _server_error(message):
    return jsonify({
        'success': False,
        'message': message,
        'error_code': 'server_error'
    }), 500
