from __future__ import annotations
from enum import Enum


class ResultCode(str, Enum):
    SUCCESS = "success"
    ALREADY_REGISTERED = "already_registered"
    NOT_REGISTERED = "not_registered"
    ALREADY_INVITED = "already_invited"
    INVITE_NO_LONGER_VALID = "invite_no_longer_valid"
    ALREADY_RESPONDED = "already_responded"
    CAPACITY_CONFLICT = "capacity_conflict"
    ACTIVITY_NOT_FOUND = "activity_not_found"
    ACTIVITY_CLOSED = "activity_closed"
    NOT_TEAM_ACTIVITY = "not_team_activity"
    INVALID_INVITE = "invalid_invite"
    NOT_TEAM_MEMBER = "not_team_member"
    UNKNOWN = "unknown"


class RosterError(Exception):
    """Base for outcomes a caller can act on. Raising one rolls the transaction back."""
    code: ResultCode = ResultCode.UNKNOWN
    retryable = False

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.code.value)
        self.detail = detail or self.code.value


# validation: caller misuse, never retried
class AlreadyRegistered(RosterError): code = ResultCode.ALREADY_REGISTERED
class NotRegistered(RosterError): code = ResultCode.NOT_REGISTERED
class AlreadyInvited(RosterError): code = ResultCode.ALREADY_INVITED
class ActivityNotFound(RosterError): code = ResultCode.ACTIVITY_NOT_FOUND
class ActivityClosed(RosterError): code = ResultCode.ACTIVITY_CLOSED
class NotTeamActivity(RosterError): code = ResultCode.NOT_TEAM_ACTIVITY
class InvalidInvite(RosterError): code = ResultCode.INVALID_INVITE
class NotTeamMember(RosterError): code = ResultCode.NOT_TEAM_MEMBER

# staleness: another party moved first
class InviteNoLongerValid(RosterError): code = ResultCode.INVITE_NO_LONGER_VALID
class AlreadyResponded(RosterError): code = ResultCode.ALREADY_RESPONDED


class CapacityConflict(RosterError):
    """Retries exhausted against concurrent writers. Safe to try again later."""
    code = ResultCode.CAPACITY_CONFLICT
    retryable = True


class InvariantViolation(RuntimeError):
    """Counters would drift or go negative. A bug, not a runtime condition."""
