import pytest

from roster.domain.transitions import (
    InvalidTransition,
    RegEvent,
    RegState,
    TeamEvent,
    TeamState,
    REGISTRANT_TRANSITIONS,
    next_registrant_state,
    next_team_state,
)


def test_register_from_none_and_cancelled():
    assert next_registrant_state(RegState.NONE, RegEvent.ADMIT) is RegState.CONFIRMED
    assert next_registrant_state(RegState.NONE, RegEvent.QUEUE) is RegState.WAITLIST
    # recycled record
    assert next_registrant_state("cancelled", RegEvent.ADMIT) is RegState.CONFIRMED
    assert next_registrant_state("cancelled", RegEvent.QUEUE) is RegState.WAITLIST


def test_promote_only_from_waitlist():
    assert next_registrant_state("waitlist", RegEvent.PROMOTE) is RegState.CONFIRMED
    for state in (RegState.NONE, RegState.CONFIRMED, RegState.CANCELLED):
        with pytest.raises(InvalidTransition):
            next_registrant_state(state, RegEvent.PROMOTE)


def test_withdraw_is_terminal():
    assert next_registrant_state("confirmed", RegEvent.WITHDRAW) is RegState.CANCELLED
    assert next_registrant_state("waitlist", RegEvent.WITHDRAW) is RegState.CANCELLED
    with pytest.raises(InvalidTransition) as ei:
        next_registrant_state("cancelled", RegEvent.WITHDRAW)
    assert ei.value.entity == "registrant"
    assert ei.value.state == "cancelled"


def test_close_only_cancels_waitlist():
    assert next_registrant_state("waitlist", RegEvent.CLOSE) is RegState.CANCELLED
    with pytest.raises(InvalidTransition):
        next_registrant_state("confirmed", RegEvent.CLOSE)


def test_nothing_leaves_none_except_registration():
    from_none = {ev for (st, ev) in REGISTRANT_TRANSITIONS if st is RegState.NONE}
    assert from_none == {RegEvent.ADMIT, RegEvent.QUEUE}


def test_team_lifecycle():
    assert next_team_state(TeamState.NONE, TeamEvent.INVITE) is TeamState.PENDING
    assert next_team_state("pending", TeamEvent.ACCEPT) is TeamState.CONFIRMED
    assert next_team_state("pending", TeamEvent.DECLINE) is TeamState.DISSOLVED
    assert next_team_state("pending", TeamEvent.SUPERSEDE) is TeamState.DISSOLVED
    assert next_team_state("confirmed", TeamEvent.LEAVE) is TeamState.DISSOLVED


@pytest.mark.parametrize(
    "state,event",
    [
        ("confirmed", TeamEvent.ACCEPT),
        ("confirmed", TeamEvent.DECLINE),
        ("dissolved", TeamEvent.LEAVE),
        ("none", TeamEvent.ACCEPT),
    ],
)
def test_team_rejects_undefined(state, event):
    with pytest.raises(InvalidTransition):
        next_team_state(state, event)


def test_unknown_state_value():
    with pytest.raises(ValueError):
        next_registrant_state("bogus", RegEvent.ADMIT)


def test_pending_team_dissolves_on_close():
    assert next_team_state("pending", TeamEvent.CLOSE) is TeamState.DISSOLVED
    with pytest.raises(InvalidTransition):
        next_team_state("confirmed", TeamEvent.CLOSE)


def test_active_statuses_come_from_the_table():
    from roster.domain.transitions import ACTIVE_REG_STATES
    from roster.repos.registrants import ACTIVE

    assert set(ACTIVE) == {s.value for s in ACTIVE_REG_STATES} == {"confirmed", "waitlist"}
