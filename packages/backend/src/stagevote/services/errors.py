"""Voting errors shared by the store, the hub, and the routes.

Routes translate these into HTTP status codes; the hub never lets
ChannelWriteFailure escape to the voter.
"""


class PerformanceNotFoundError(Exception):
    """Raised when a performance id does not exist."""


class VotingClosedError(Exception):
    """Raised when a performance is not accepting votes or subscribers."""


class DuplicateVoteError(Exception):
    """Raised when the user already voted for this performance."""


class InvalidVoteOptionError(Exception):
    """Raised when the vote value is not one of the performance's options."""


class PersistenceError(Exception):
    """Raised when the store is unavailable or rejects a write unexpectedly."""


class ChannelWriteFailure(Exception):
    """Raised by an output channel that cannot accept another message."""
