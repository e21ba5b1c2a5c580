"""Exception types raised across the reconciliation pipeline."""

from __future__ import annotations


class ReconciliationError(RuntimeError):
    """Base class for reconciliation failures."""


class ConfigurationError(ReconciliationError):
    """Raised when a rule or target locator is not usable as configured."""

    def __init__(self, message: str, *, rule_id: int | None = None) -> None:
        super().__init__(message)
        self.rule_id = rule_id


class UnknownStrategyError(ConfigurationError):
    """Raised when a rule names a transformation strategy that is not registered."""


class TransformationError(ReconciliationError):
    """Raised when a raw answer cannot be converted under its rule."""


class ValidationDegraded(ReconciliationError):
    """Raised by judgement clients when they are unavailable or return unusable output."""


class ApplyFailure(ReconciliationError):
    """Raised when writing an approved value to the profile store fails."""

    def __init__(self, message: str, *, proposal_id: int | None = None) -> None:
        super().__init__(message)
        self.proposal_id = proposal_id


class ProposalNotFoundError(LookupError):
    """Raised when a proposal id does not exist."""

    def __init__(self, proposal_id: int) -> None:
        super().__init__(f"Proposal not found: {proposal_id}")
        self.proposal_id = proposal_id
