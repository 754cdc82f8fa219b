"""Typed failures raised by the settlement engine and the HTTP layer."""


class SettlementError(Exception):
    """Base class for every failure the balance and settlement engine raises."""


class UnknownMemberError(SettlementError):
    def __init__(self, member_id, group_id=None) -> None:
        self.member_id = member_id
        self.group_id = group_id
        if group_id is None:
            message = f"ledger entry references unknown member {member_id!r}"
        else:
            message = f"ledger entry references member {member_id!r} who is not in group {group_id!r}"
        super().__init__(message)


class InvariantViolationError(SettlementError):
    pass


class EmptyGroupError(SettlementError):
    pass


class ValidationError(ValueError):
    """Request payload failed validation; ``code`` is the short error code sent to clients."""

    def __init__(self, code: str, field=None) -> None:
        self.code = code
        self.field = field
        super().__init__(code)
