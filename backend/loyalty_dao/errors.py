"""Governance error taxonomy"""
from typing import Any, Dict, Optional


class GovernanceError(Exception):
    """Base exception for governance errors."""

    status_code: int = 400
    code: str = "GovernanceError"
    retryable: bool = False

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context: Dict[str, Any] = context

    def to_payload(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.detail}
        payload.update(self.context)
        return payload


class ValidationError(GovernanceError):
    """Malformed input."""
    status_code = 422
    code = "ValidationError"


class NotFound(GovernanceError):
    """Entity does not exist."""
    status_code = 404
    code = "NotFound"


class NotAuthorized(GovernanceError):
    """Actor lacks the role required for the operation."""
    status_code = 403
    code = "NotAuthorized"


class ThresholdNotMet(GovernanceError):
    """Proposer voting power is below the organization's proposal threshold."""
    status_code = 403
    code = "ThresholdNotMet"


class InactiveMember(GovernanceError):
    """Member is inactive or outside the proposal's organization."""
    status_code = 403
    code = "InactiveMember"


class InvalidState(GovernanceError):
    """Illegal proposal transition."""
    status_code = 409
    code = "InvalidState"


class DuplicateVote(GovernanceError):
    """Voter already has a vote on this proposal."""
    status_code = 409
    code = "DuplicateVote"


class ProposalNotActive(GovernanceError):
    """Proposal is not accepting votes."""
    status_code = 409
    code = "ProposalNotActive"


class Conflict(GovernanceError):
    """Unique key violation or optimistic version mismatch."""
    status_code = 409
    code = "Conflict"
    retryable = True


class StoreUnavailable(GovernanceError):
    """Ledger store timed out or could not be reached."""
    status_code = 503
    code = "StoreUnavailable"
    retryable = True


class ParameterApplyFailed(GovernanceError):
    """Configuration store rejected or failed to apply a parameter."""
    status_code = 502
    code = "ParameterApplyFailed"
    retryable = True


def error_payload(exc: GovernanceError, path: Optional[str] = None) -> Dict[str, Any]:
    payload = exc.to_payload()
    if path:
        payload["path"] = path
    if exc.retryable:
        payload["retryable"] = True
    return payload
