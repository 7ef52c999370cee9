"""Domain errors raised by the follow-up services."""


class FollowUpError(Exception):
    """Base exception for follow-up engine errors."""

    pass


class NotFoundError(FollowUpError):
    """Sequence, step, or execution missing for the given id/org."""

    pass


class InvalidStateError(FollowUpError):
    """Request contradicts the current state (e.g. starting a disabled sequence)."""

    pass


class ContactLimitReachedError(InvalidStateError):
    """Contact already received the maximum number of runs of this sequence."""

    pass


class StartGuardRejectedError(InvalidStateError):
    """Trigger data does not satisfy the sequence start conditions."""

    pass


class DispatchError(FollowUpError):
    """External send failed."""

    pass


class SequenceValidationError(FollowUpError, ValueError):
    """Malformed trigger config or step list."""

    pass


class TransportConfigError(FollowUpError, ValueError):
    """MESSAGE_TRANSPORT is unknown or its credentials are missing."""

    pass
