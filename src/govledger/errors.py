"""
govledger/errors.py

Exception taxonomy for governance operations.

Every error is a caller-correctable rejection raised before any state is
written. Callers can catch a whole family (ValidationError, LifecycleError,
AuthorizationError, LookupFailure) or the specific class.
"""

from typing import Optional


class GovernanceError(Exception):
    """Base class for all governance rejections."""

    def __init__(self, message: str = "", proposal_id: Optional[int] = None):
        self.proposal_id = proposal_id
        if proposal_id is not None and message:
            message = f"{message} (proposal {proposal_id})"
        super().__init__(message or self.__class__.__name__)

    @property
    def code(self) -> str:
        """Stable name used in logs and metrics labels."""
        return self.__class__.__name__


# ============================================================================
# FAMILIES
# ============================================================================

class ValidationError(GovernanceError):
    """Input failed validation."""


class LifecycleError(GovernanceError):
    """Operation not allowed in the proposal's current state."""


class AuthorizationError(GovernanceError):
    """Caller is not entitled to perform the operation."""


class LookupFailure(GovernanceError):
    """Referenced record does not exist."""


# ============================================================================
# INPUT VALIDATION
# ============================================================================

class EmptyTitle(ValidationError):
    """Proposal title is empty."""


class EmptyOptions(ValidationError):
    """Proposal has no options."""


class EmptyOption(ValidationError):
    """An option label is empty."""


class TooManyOptions(ValidationError):
    """Proposal has more options than allowed."""


class InvalidDuration(ValidationError):
    """Voting window outside the allowed bounds."""


class InvalidQuorum(ValidationError):
    """Quorum threshold is negative."""


class InvalidOption(ValidationError):
    """Option index out of range."""


class InvalidWeight(ValidationError):
    """Weight provider returned a weight below 1."""


# ============================================================================
# LIFECYCLE
# ============================================================================

class ProposalNotActive(LifecycleError):
    """Proposal is not in the ACTIVE state (or not yet past its end)."""


class ProposalEnded(LifecycleError):
    """Voting window has closed."""


class AlreadyVoted(LifecycleError):
    """Voter already has a vote record for the proposal."""


class AlreadyDelegated(LifecycleError):
    """Delegator already has a delegation record for the proposal."""


class ContractPaused(LifecycleError):
    """Governance is paused by the owner."""


# ============================================================================
# AUTHORIZATION / LOOKUP
# ============================================================================

class Unauthorized(AuthorizationError):
    """Caller lacks the required role or right."""


class ProposalNotFound(LookupFailure):
    """No proposal with the given id."""
