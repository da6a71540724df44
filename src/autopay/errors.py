"""Exception types for AutoPay."""


class AutoPayError(Exception):
    """Base exception for all AutoPay errors."""


class ClaimInputError(AutoPayError):
    """Raised when a claim is missing required fields."""


class PolicyError(AutoPayError):
    """Raised when a policy update is invalid."""


class AuditLogError(AutoPayError):
    """Raised when the audit ledger cannot be written."""


class AgentError(AutoPayError):
    """Raised when the claim agent or its tooling fails."""


class PayoutError(AutoPayError):
    """Base class for payout execution failures."""


class ToolDiscoveryError(PayoutError):
    """Raised when no usable payment tool can be found."""


class PayoutExecutionError(PayoutError):
    """Raised when every candidate payout invocation failed."""

    def __init__(
        self,
        message: str,
        *,
        attempts: tuple[object, ...] = (),
        last_error: str | None = None,
    ) -> None:
        super().__init__(message)
        self.attempts = tuple(attempts)
        self.last_error = last_error
