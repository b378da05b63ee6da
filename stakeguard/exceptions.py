"""
StakeGuard Exceptions

Custom exception classes for the incentive and discipline engine.
"""

from typing import Optional


class StakeGuardException(Exception):
    """Base exception for StakeGuard."""
    pass


class PreconditionViolation(StakeGuardException):
    """
    An operation was rejected before any state mutation.

    Attributes:
        precondition: Short machine-readable name of the failed check
            (e.g. ``"weights_sum"``, ``"penalty_range"``, ``"unregistered"``).
    """

    def __init__(self, precondition: str, message: Optional[str] = None):
        self.precondition = precondition
        super().__init__(message or f"Precondition failed: {precondition}")


class AuthorizationViolation(StakeGuardException):
    """Caller does not hold a valid administrator capability."""
    pass


class ExternalCollaboratorFailure(StakeGuardException):
    """A ledger, oracle or hasher call failed or returned inconsistent data."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")


class ReentrancyError(StakeGuardException):
    """A mutating entry point was re-entered while another was in progress."""
    pass


class ConfigurationError(StakeGuardException):
    """Configuration error."""
    pass
