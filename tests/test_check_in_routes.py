import json

import pytest

from qr_checkin.services.check_in_policy import CheckInMode

ANN_BADGE = '{"name":"Ann","deviceId":"d1"}'


def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    body = res.get_json()
    assert body['status'] == 'ok'
    assert body['storage'] == 'database'


def test_initial_state_is_locked_self_check_in(client):
    res = client.get('/check-in/state')
    assert res.status_code == 200
    body = res.get_json()
    assert body['state'] == {'mode': CheckInMode.SELF_CHECK_IN, 'unlocked': False, 'attempted': False}
    assert body['device_id']
    assert body['record_count'] == 0


def test_device_id_is_stable_between_requests(client):
    first = client.get('/check-in/state').get_json()['device_id']
    second = client.get('/check-in/state').get_json()['device_id']
    assert first == second


def test_wrong_pin_is_rejected(client):
    res = client.post('/check-in/unlock', json={'pin': '0000'})
    assert res.status_code == 401
    assert res.get_json()['error_code'] == 'invalid-pin'
    assert client.get('/check-in/state').get_json()['state']['unlocked'] is False


def test_organizer_mode_requires_unlock(client):
    res = client.post('/check-in/mode', json={'mode': CheckInMode.ORGANIZER_SCAN})
    assert res.status_code == 403
    assert res.get_json()['error_code'] == 'locked'


def test_unknown_mode_is_bad_request(organizer_client):
    res = organizer_client.post('/check-in/mode', json={'mode': 'kiosk'})
    assert res.status_code == 400


def test_end_to_end_organizer_flow(organizer_client):
    res = organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})
    assert res.status_code == 200
    body = res.get_json()
    assert body['status'] == 'accepted'
    assert body['record']['name'] == 'Ann'
    assert body['record']['device_id'] == 'd1'

    res = organizer_client.post('/check-in/manual', json={'name': 'Ann'})
    assert res.status_code == 409
    assert res.get_json()['status'] == 'duplicate_name'

    records = organizer_client.get('/check-in/records').get_json()
    assert records['count'] == 1
    assert records['records'][0]['name'] == 'Ann'
    assert records['records'][0]['device_id'] == 'd1'


def test_scanner_qr_data_key_is_accepted(organizer_client):
    res = organizer_client.post('/check-in/scan', json={'qr_data': 'Bob'})
    assert res.status_code == 200
    assert res.get_json()['record']['name'] == 'Bob'


def test_repeated_scan_is_debounced(organizer_client):
    assert organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE}).status_code == 200

    res = organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})
    assert res.status_code == 202
    assert res.get_json()['status'] == 'debounced'
    assert organizer_client.get('/check-in/records').get_json()['count'] == 1


def test_same_badge_from_another_scanner_is_reconciled(organizer_client):
    res = organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE}, headers={'X-Device-Id': 'scanner-1'})
    assert res.status_code == 200

    res = organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE}, headers={'X-Device-Id': 'scanner-2'})
    assert res.status_code == 409
    assert res.get_json()['status'] == 'duplicate_name'


def test_accent_insensitive_duplicate(organizer_client):
    organizer_client.post('/check-in/manual', json={'name': 'José'})
    res = organizer_client.post('/check-in/manual', json={'name': 'jose'})
    assert res.status_code == 409


def test_blank_name_is_unprocessable(organizer_client):
    res = organizer_client.post('/check-in/manual', json={'name': '   '})
    assert res.status_code == 422
    assert res.get_json()['error_code'] == 'invalid_name'


@pytest.mark.parametrize('payload', [{}, {'name': None}, {'name': 5}, {'name': {'first': 'Ann'}}])
def test_manual_entry_requires_text_name(organizer_client, payload):
    res = organizer_client.post('/check-in/manual', json=payload)
    assert res.status_code == 400
    assert res.get_json()['error_code'] == 'missing_name'
    assert organizer_client.get('/check-in/records').get_json()['count'] == 0


def test_missing_scan_data_is_bad_request(client):
    res = client.post('/check-in/scan', json={})
    assert res.status_code == 400
    assert res.get_json()['error_code'] == 'missing_data'


def test_self_check_in_once_per_device(client):
    headers = {'X-Device-Id': 'phone-1'}

    res = client.post('/check-in/scan', json={'raw': ANN_BADGE}, headers=headers)
    assert res.status_code == 200
    assert res.get_json()['status'] == 'self_confirmed'

    res = client.post('/check-in/scan', json={'raw': 'Somebody else'}, headers=headers)
    assert res.status_code == 403
    assert res.get_json()['error_code'] == 'already-checked-in'

    assert client.get('/check-in/records').get_json()['count'] == 0


def test_locked_manual_entry_is_refused(client):
    res = client.post('/check-in/manual', json={'name': 'Ann'})
    assert res.status_code == 403
    assert res.get_json()['error_code'] == 'locked'
    assert client.get('/check-in/records').get_json()['count'] == 0


def test_recent_scans_are_kept_in_session(organizer_client):
    organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})
    organizer_client.post('/check-in/manual', json={'name': 'Ann'})

    state = organizer_client.get('/check-in/state').get_json()
    assert [scan['status'] for scan in state['recent_scans']] == ['duplicate_name', 'accepted']
    assert state['status_message'].startswith('Duplicate ignored')


def test_remove_record(organizer_client):
    organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})

    assert organizer_client.delete('/check-in/records/unknown').status_code == 404
    res = organizer_client.delete('/check-in/records/d1')
    assert res.status_code == 200
    assert res.get_json()['removed'] == 1
    assert organizer_client.get('/check-in/records').get_json()['count'] == 0


def test_remove_record_requires_unlock(app):
    with app.test_client() as locked_client:
        assert locked_client.delete('/check-in/records/d1').status_code == 403


def test_reset_clears_roster_and_relocks(organizer_client):
    device_before = organizer_client.get('/check-in/state').get_json()['device_id']
    organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})

    res = organizer_client.post('/check-in/reset')
    assert res.status_code == 200
    body = res.get_json()
    assert body['device_id'] != device_before
    assert body['state']['unlocked'] is False

    state = organizer_client.get('/check-in/state').get_json()
    assert state['record_count'] == 0
    assert state['device_id'] == body['device_id']
    assert state['status_message'] == 'All scans cleared'
    assert organizer_client.post('/check-in/manual', json={'name': 'Ann'}).status_code == 403


def test_reset_requires_unlock(client):
    assert client.post('/check-in/reset').status_code == 403


def test_export_rows(organizer_client):
    organizer_client.post('/check-in/scan', json={'raw': ANN_BADGE})
    organizer_client.post('/check-in/manual', json={'name': 'Bob'})

    body = organizer_client.get('/check-in/export').get_json()
    assert body['columns'] == ['name', 'device_id', 'timestamp']
    assert {row['name'] for row in body['rows']} == {'Ann', 'Bob'}
    assert set(body['rows'][0]) == {'name', 'device_id', 'timestamp'}


def test_camera_error_sets_status_message(client):
    res = client.post('/check-in/camera-error', json={'message': 'Permission denied'})
    assert res.status_code == 200
    assert client.get('/check-in/state').get_json()['status_message'] == 'Permission denied'


def test_attendee_badge(client):
    headers = {'X-Device-Id': 'phone-7'}
    body = client.get('/attendee/badge', headers=headers).get_json()
    assert body['payload'] is None

    res = client.put('/attendee/name', json={'name': ' Ann Lee '}, headers=headers)
    assert res.status_code == 200
    payload = json.loads(res.get_json()['payload'])
    assert payload == {'name': 'Ann Lee', 'deviceId': 'phone-7'}


def test_attendee_badges_do_not_share_names(client):
    res = client.put('/attendee/name', json={'name': 'Ann'}, headers={'X-Device-Id': 'phone-a'})
    assert res.status_code == 200

    body = client.get('/attendee/badge', headers={'X-Device-Id': 'phone-b'}).get_json()
    assert body['device_id'] == 'phone-b'
    assert body['name'] == ''
    assert body['payload'] is None

    client.put('/attendee/name', json={'name': 'Bob'}, headers={'X-Device-Id': 'phone-b'})
    body = client.get('/attendee/badge', headers={'X-Device-Id': 'phone-a'}).get_json()
    assert json.loads(body['payload']) == {'name': 'Ann', 'deviceId': 'phone-a'}


@pytest.mark.parametrize('name', ['', '   ', 5, None, ['Ann']])
def test_attendee_name_required(client, name):
    res = client.put('/attendee/name', json={'name': name})
    assert res.status_code == 400
    assert res.get_json()['error_code'] == 'missing_name'


def test_unknown_route_is_json_404(client):
    res = client.get('/nope')
    assert res.status_code == 404
    assert res.get_json()['error_code'] == 'not_found'
