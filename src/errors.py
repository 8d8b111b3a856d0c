"""Exception taxonomy for the document-to-ledger pipeline.

Provider errors are transient and never leave the extraction orchestrator.
Invariant violations indicate a defect (an unbalanced journal, a reference
across tenants) and always abort the surrounding transaction. Validation
failures and duplicate decisions are ordinary values and have no exception
type here.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ProviderError(PipelineError):
    """A text-extraction provider failed (timeout, HTTP error, quota, bad output)."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class ProviderUnavailableError(ProviderError):
    """A provider is not configured or its backing tool is not installed."""


class InvariantViolation(PipelineError):
    """A hard ledger or tenancy invariant would be broken by the operation."""


class UnbalancedEntryError(InvariantViolation):
    """Total debits and credits of a journal entry differ beyond tolerance."""

    def __init__(self, total_debits: object, total_credits: object) -> None:
        super().__init__(
            f"Journal entry not balanced: Debits={total_debits}, "
            f"Credits={total_credits}"
        )
        self.total_debits = total_debits
        self.total_credits = total_credits


class TenantMismatchError(InvariantViolation):
    """A write referenced a row owned by a different client or accountant."""


class NotFoundError(PipelineError):
    """A document, journal entry or review item does not exist for the tenant."""


class InvalidTransitionError(PipelineError):
    """A status transition is not allowed from the current state."""

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target


class ClaimConflictError(InvalidTransitionError):
    """Another reviewer claimed the review item first."""
