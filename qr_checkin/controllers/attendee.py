# routes/attendee.py
"""
Attendee routes: the name an attendee types and the badge payload their QR code carries.
"""

import logging

from flask import Blueprint, request, jsonify

from qr_checkin.extensions import check_in_service

attendee_bp = Blueprint('attendee', __name__)

logger = logging.getLogger('attendee')


def _device_id():
    header_value = (request.headers.get('X-Device-Id') or '').strip()
    return header_value or check_in_service.device_id()


@attendee_bp.route('/badge')
def badge():
    """Stored name, device id and the JSON text to encode in the badge."""
    try:
        return jsonify({'success': True, **check_in_service.profile.badge(_device_id())})

    except Exception as e:
        logger.error(f"Error building badge: {str(e)}", exc_info=True)
        return jsonify({
            'success': False,
            'message': 'Error building badge',
            'error_code': 'server_error'
        }), 500


@attendee_bp.route('/name', methods=['PUT'])
def set_name():
    """Store the attendee's name for their badge."""
    data = request.get_json(silent=True) or {}
    name = data.get('name')
    if not isinstance(name, str) or not name.strip():
        return jsonify({
            'success': False,
            'message': 'Name is required',
            'error_code': 'missing_name'
        }), 400

    device_id = _device_id()
    check_in_service.profile.set_name(device_id, name)
    logger.info(f"Attendee name set for device {device_id}: {name.strip()}")
    return jsonify({'success': True, **check_in_service.profile.badge(device_id)})
