import json

from qr_checkin.services.check_in_policy import CheckInMode, DenyReason, SessionState
from qr_checkin.services.ledger import OutcomeStatus


def test_end_to_end_organizer_flow(engine):
    state = SessionState()
    assert engine.unlock(state, '2468')
    assert engine.set_mode(state, CheckInMode.ORGANIZER_SCAN)

    outcome = engine.handle_scan('{"name":"Ann","deviceId":"d1"}', state, 'station')
    assert outcome.status == OutcomeStatus.ACCEPTED
    assert [(r.name, r.device_id) for r in engine.records()] == [('Ann', 'd1')]

    outcome = engine.handle_manual_entry('Ann', state, 'station')
    assert outcome.status == OutcomeStatus.DUPLICATE_NAME
    assert len(engine.records()) == 1
    assert engine.records()[0].name == 'Ann'


def test_identical_scans_inside_window_are_debounced(engine, organizer_state, monotonic):
    raw = '{"name":"Ann","deviceId":"d1"}'
    assert engine.handle_scan(raw, organizer_state, 'station').status == OutcomeStatus.ACCEPTED

    monotonic.advance(400)
    assert engine.handle_scan(raw, organizer_state, 'station') is None
    monotonic.advance(1000)
    assert engine.handle_scan(raw, organizer_state, 'station') is None
    assert len(engine.records()) == 1


def test_repeat_after_window_is_reconciled_again(engine, organizer_state, monotonic):
    raw = 'Ann'
    engine.handle_scan(raw, organizer_state, 'station')
    monotonic.advance(1500)

    outcome = engine.handle_scan(raw, organizer_state, 'station')
    assert outcome.status == OutcomeStatus.DUPLICATE_NAME


def test_debounce_is_kept_per_scanning_device(engine, monotonic):
    raw = 'Ann'
    first = SessionState(mode=CheckInMode.ORGANIZER_SCAN, unlocked=True)
    second = SessionState(mode=CheckInMode.ORGANIZER_SCAN, unlocked=True)

    assert engine.handle_scan(raw, first, 'station-a').status == OutcomeStatus.ACCEPTED
    monotonic.advance(200)
    outcome = engine.handle_scan(raw, second, 'station-b')
    assert outcome.status == OutcomeStatus.DUPLICATE_NAME
    assert engine.handle_scan(raw, first, 'station-a') is None


def test_different_payloads_are_not_debounced(engine, organizer_state):
    assert engine.handle_scan('Ann', organizer_state, 'station').status == OutcomeStatus.ACCEPTED
    assert engine.handle_scan('Bob', organizer_state, 'station').status == OutcomeStatus.ACCEPTED


def test_organizer_scan_idempotent(engine, organizer_state, monotonic):
    outcomes = []
    for _ in range(4):
        outcomes.append(engine.handle_scan('Ann Lee', organizer_state, 'station').status)
        monotonic.advance(2000)

    assert outcomes == [OutcomeStatus.ACCEPTED] + [OutcomeStatus.DUPLICATE_NAME] * 3


def test_accent_insensitive_duplicate(engine, organizer_state):
    engine.handle_scan('Jose', organizer_state, 'station')
    assert engine.handle_scan('JOSÉ', organizer_state, 'station').status == OutcomeStatus.DUPLICATE_NAME


def test_self_check_in_confirms_once_without_ledger_write(engine):
    state = SessionState()

    outcome = engine.handle_scan('{"name":"Ann"}', state, 'phone-1')
    assert outcome.status == OutcomeStatus.SELF_CONFIRMED
    assert state.attempted is True
    assert engine.records() == []

    for raw in ('{"name":"Bob"}', 'Carol', '{"deviceId":"x"}'):
        outcome = engine.handle_scan(raw, state, 'phone-1')
        assert outcome.status == OutcomeStatus.UNAUTHORIZED
        assert outcome.reason == DenyReason.ALREADY_CHECKED_IN
    assert engine.records() == []


def test_self_check_in_flag_is_remembered_per_device(engine):
    engine.handle_scan('Ann', SessionState(), 'phone-1')

    fresh_session = SessionState()
    outcome = engine.handle_scan('Ann again', fresh_session, 'phone-1')
    assert outcome.reason == DenyReason.ALREADY_CHECKED_IN

    other_device = engine.handle_scan('Bob', SessionState(), 'phone-2')
    assert other_device.status == OutcomeStatus.SELF_CONFIRMED


def test_locked_organizer_scan_is_refused(engine):
    state = SessionState(mode=CheckInMode.ORGANIZER_SCAN, unlocked=False)
    outcome = engine.handle_scan('{"name":"Ann","deviceId":"d1"}', state, 'station')

    assert outcome.status == OutcomeStatus.UNAUTHORIZED
    assert outcome.reason == DenyReason.LOCKED
    assert engine.records() == []


def test_locked_manual_entry_is_refused_in_any_mode(engine):
    for mode in CheckInMode.ALL:
        outcome = engine.handle_manual_entry('Ann', SessionState(mode=mode), 'station')
        assert outcome.status == OutcomeStatus.UNAUTHORIZED
        assert outcome.reason == DenyReason.LOCKED
    assert engine.records() == []


def test_manual_entry_ignores_self_check_in_branch(engine):
    state = SessionState(mode=CheckInMode.SELF_CHECK_IN, unlocked=True, attempted=True)
    outcome = engine.handle_manual_entry(' Dana ', state, 'station')

    assert outcome.status == OutcomeStatus.ACCEPTED
    assert outcome.record.name == 'Dana'
    assert outcome.record.device_id == 'station'
    assert outcome.record.check_in_method == 'manual'


def test_blank_manual_entry_is_invalid(engine, organizer_state):
    assert engine.handle_manual_entry('   ', organizer_state, 'station').status == OutcomeStatus.INVALID_NAME


def test_device_mode_short_circuits_before_policy(device_engine, organizer_state, monotonic):
    device_engine.handle_scan('{"name":"Ann","deviceId":"d1"}', organizer_state, 'station')
    monotonic.advance(2000)

    locked = SessionState(mode=CheckInMode.ORGANIZER_SCAN)
    outcome = device_engine.handle_scan('{"name":"Someone","deviceId":"d1"}', locked, 'station')
    assert outcome.status == OutcomeStatus.DUPLICATE_DEVICE


def test_device_mode_plain_text_is_a_device_id(device_engine, organizer_state):
    outcome = device_engine.handle_scan('badge-42', organizer_state, 'station')
    assert outcome.status == OutcomeStatus.ACCEPTED
    assert outcome.record.device_id == 'badge-42'
    assert outcome.record.name == 'badge-42'


def test_device_mode_allows_same_name_on_new_device(device_engine, organizer_state):
    device_engine.handle_scan('{"name":"Ann","deviceId":"d1"}', organizer_state, 'station')
    outcome = device_engine.handle_scan('{"name":"Ann","deviceId":"d2"}', organizer_state, 'station')
    assert outcome.status == OutcomeStatus.ACCEPTED


def test_remove_record_requires_lock(engine, organizer_state):
    engine.handle_scan('{"name":"Ann","deviceId":"d1"}', organizer_state, 'station')

    decision, removed = engine.remove_record(SessionState(), 'd1')
    assert decision.reason == DenyReason.LOCKED
    assert removed == 0

    decision, removed = engine.remove_record(organizer_state, 'd1')
    assert decision and removed == 1


def test_clear_all_resets_everything(engine, organizer_state):
    before = engine.device_id()
    engine.handle_scan('Ann', organizer_state, 'station')
    engine.handle_scan('Ann badge', SessionState(), 'phone-1')
    assert engine.attempts.has_attempted('phone-1')

    decision, after = engine.clear_all(organizer_state)

    assert decision
    assert after != before
    assert engine.records() == []
    assert not engine.attempts.has_attempted('phone-1')
    assert organizer_state.unlocked is False
    assert organizer_state.mode == CheckInMode.SELF_CHECK_IN


def test_clear_all_refused_while_locked(engine, organizer_state):
    engine.handle_scan('Ann', organizer_state, 'station')
    decision, device_id = engine.clear_all(SessionState())
    assert decision.reason == DenyReason.LOCKED
    assert device_id is None
    assert len(engine.records()) == 1


def test_outcome_dict_for_responses(engine, organizer_state):
    result = engine.handle_scan('{"name":"Ann","deviceId":"d1"}', organizer_state, 'station').to_dict()
    assert result['success'] is True
    assert result['status'] == 'accepted'
    assert result['message'] == 'Saved: Ann'
    assert result['record']['device_id'] == 'd1'
    assert json.dumps(result)
