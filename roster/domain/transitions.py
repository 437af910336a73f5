"""Transition tables for registrants and teams.

Each entity has a closed set of states and events. ``next_*_state`` is the
only way services move a record between states; anything not listed in the
table raises ``InvalidTransition``. The tables know nothing about storage, so
they can be exercised directly in tests.
"""
from __future__ import annotations

from enum import Enum
from typing import Mapping


class InvalidTransition(Exception):
    def __init__(self, entity: str, state: str, event: str):
        super().__init__(f"{entity}: no transition from {state!r} on {event!r}")
        self.entity = entity
        self.state = state
        self.event = event


# ---------- Registrant ----------
class RegState(str, Enum):
    NONE = "none"            # no record yet (never persisted)
    CONFIRMED = "confirmed"
    WAITLIST = "waitlist"
    CANCELLED = "cancelled"


class RegEvent(str, Enum):
    ADMIT = "admit"              # register / reserve with a free slot
    QUEUE = "queue"              # register / reserve into the waitlist
    PROMOTE = "promote"          # waitlist head takes a vacated slot
    WITHDRAW = "withdraw"        # registrant leaves (or leaves their team)
    CLOSE = "close"              # activity closed while still waitlisted


REGISTRANT_TRANSITIONS: Mapping[tuple[RegState, RegEvent], RegState] = {
    (RegState.NONE, RegEvent.ADMIT): RegState.CONFIRMED,
    (RegState.NONE, RegEvent.QUEUE): RegState.WAITLIST,
    (RegState.CANCELLED, RegEvent.ADMIT): RegState.CONFIRMED,
    (RegState.CANCELLED, RegEvent.QUEUE): RegState.WAITLIST,
    # a free agent in a teams activity reserves a unit when its team forms
    (RegState.CONFIRMED, RegEvent.ADMIT): RegState.CONFIRMED,
    (RegState.CONFIRMED, RegEvent.QUEUE): RegState.WAITLIST,
    (RegState.WAITLIST, RegEvent.ADMIT): RegState.CONFIRMED,
    (RegState.WAITLIST, RegEvent.QUEUE): RegState.WAITLIST,
    (RegState.WAITLIST, RegEvent.PROMOTE): RegState.CONFIRMED,
    (RegState.CONFIRMED, RegEvent.WITHDRAW): RegState.CANCELLED,
    (RegState.WAITLIST, RegEvent.WITHDRAW): RegState.CANCELLED,
    (RegState.WAITLIST, RegEvent.CLOSE): RegState.CANCELLED,
}

ACTIVE_REG_STATES = frozenset({RegState.CONFIRMED, RegState.WAITLIST})


def next_registrant_state(state: RegState | str, event: RegEvent) -> RegState:
    state = RegState(state)
    try:
        return REGISTRANT_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition("registrant", state.value, event.value) from None


# ---------- Team ----------
class TeamState(str, Enum):
    NONE = "none"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISSOLVED = "dissolved"   # terminal; the row is deleted


class TeamEvent(str, Enum):
    INVITE = "invite"
    ACCEPT = "accept"
    DECLINE = "decline"
    LEAVE = "leave"
    # another invite involving one of the players was accepted
    SUPERSEDE = "supersede"
    CLOSE = "close"           # activity closed before the invite was answered


TEAM_TRANSITIONS: Mapping[tuple[TeamState, TeamEvent], TeamState] = {
    (TeamState.NONE, TeamEvent.INVITE): TeamState.PENDING,
    (TeamState.PENDING, TeamEvent.ACCEPT): TeamState.CONFIRMED,
    (TeamState.PENDING, TeamEvent.DECLINE): TeamState.DISSOLVED,
    (TeamState.PENDING, TeamEvent.LEAVE): TeamState.DISSOLVED,
    (TeamState.PENDING, TeamEvent.SUPERSEDE): TeamState.DISSOLVED,
    (TeamState.PENDING, TeamEvent.CLOSE): TeamState.DISSOLVED,
    (TeamState.CONFIRMED, TeamEvent.LEAVE): TeamState.DISSOLVED,
}


def next_team_state(state: TeamState | str, event: TeamEvent) -> TeamState:
    state = TeamState(state)
    try:
        return TEAM_TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition("team", state.value, event.value) from None
