"""Error taxonomy for the generation orchestration core."""

from typing import Optional

from ..models.quota_models import QuotaDecision


class OrchestrationError(Exception):
    """Base class for orchestration failures."""

    retryable = False


class ValidationError(OrchestrationError):
    """Raised on malformed or out-of-range input. Never retried."""

    pass


class QuotaExceeded(OrchestrationError):
    """Raised when a user has used up a plan quota."""

    def __init__(self, decision: QuotaDecision):
        self.decision = decision
        super().__init__(
            f"{decision.quota_type} quota exhausted: "
            f"{decision.used}/{decision.limit} used until {decision.period_end.isoformat()}"
        )


class NoEligibleModel(OrchestrationError):
    """Raised when no catalog model is available to a plan."""

    pass


class ModelInvocationError(OrchestrationError):
    """Raised when one model call fails. Isolated to that model."""

    error_type = "invocation_error"

    def __init__(self, message: str, model_id: Optional[str] = None):
        self.model_id = model_id
        super().__init__(message)


class RateLimitError(ModelInvocationError):
    """Raised when rate limited by the generation backend."""

    error_type = "rate_limited"


class ModelTimeoutError(ModelInvocationError):
    """Raised when a model call exceeds its timeout."""

    error_type = "timeout"


class BackendUnreachableError(ModelInvocationError):
    """Raised when the generation backend cannot be reached at all."""

    error_type = "backend_unreachable"


class CacheUnavailable(OrchestrationError):
    """Raised by cache stores when the backing store fails."""

    pass


class InfrastructureError(OrchestrationError):
    """Raised when the generation backend is unreachable for every model."""

    retryable = True
