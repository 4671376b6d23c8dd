"""Error taxonomy for the agentd runtime.

Provider errors are retried by the runtime, capability errors are turned into
tool results, and only provider exhaustion and loop limits end a turn early.
"""

from typing import Optional


class AgentdError(Exception):
    """Base class for all agentd errors."""
    pass


class ConfigurationError(AgentdError):
    """Exception raised for configuration-related errors."""
    pass


# Provider gateway

class ProviderError(AgentdError):
    """Raised by a provider gateway when a completion cannot be produced."""

    kind = "provider_error"

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderTimeout(ProviderError):
    """The provider did not answer within the configured time."""

    kind = "timeout"


class ProviderRateLimited(ProviderError):
    """The provider rejected the request because of rate limiting."""

    kind = "rate_limited"

    def __init__(self, message: str, retry_after: Optional[float] = None, provider: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message, provider=provider)


class ProviderMalformed(ProviderError):
    """The provider answered with something that is neither text nor tool calls."""

    kind = "malformed"


class ProviderExhausted(ProviderError):
    """Raised when all provider retry attempts failed."""

    kind = "exhausted"

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Provider failed after {attempts} attempts. Last error: {last_error}")


# Capabilities

class CapabilityError(AgentdError):
    """Failure resolving or executing a capability."""

    def __init__(self, message: str, capability: Optional[str] = None):
        self.capability = capability
        super().__init__(message)


class CapabilityNotFound(CapabilityError):
    """No single enabled handler matches the requested name."""
    pass


class CapabilityTimeout(CapabilityError):
    """The handler exceeded its time budget."""
    pass


class CapabilityExecutionError(CapabilityError):
    """The handler raised while executing."""
    pass


class CapabilityConflict(CapabilityError):
    """A handler with the same name is already registered."""
    pass


# Approvals and loop control

class ApprovalTimeout(AgentdError):
    """An approval request expired without a human decision."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Approval for call {call_id} expired")


class LoopLimitExceeded(AgentdError):
    """The reasoning loop reached its configured iteration bound."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Loop iteration limit of {limit} reached")


class ToolFailureLimitExceeded(AgentdError):
    """Too many consecutive tool calls failed in one turn."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"{limit} consecutive tool calls failed")


class DeliveryError(AgentdError):
    """An outbound event could not be delivered to its channel."""

    def __init__(self, message: str, channel: Optional[str] = None):
        self.channel = channel
        super().__init__(message)
