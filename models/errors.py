"""
Exception taxonomy for the optimization loop.
"""


class OptimizationError(Exception):
    """Base class for all optimizer errors."""


class ConfigurationError(OptimizationError):
    """Invalid configuration. Fatal: raised before any side effect."""


class SignalUnavailableError(OptimizationError):
    """A market signal could not be fetched. Recovered by the gateway or cycle."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


class MalformedOpportunityError(OptimizationError):
    """An opportunity is missing a required field. Aborts the cycle before execution."""


class ExecutionFailure(OptimizationError):
    """A single execution collaborator call failed. Recorded per item."""

    def __init__(self, product_id: str, reason: str):
        super().__init__(f"Execution failed for {product_id}: {reason}")
        self.product_id = product_id
        self.reason = reason


class CycleCancelled(OptimizationError):
    """The cancellation token fired while a cycle was in flight."""


class CycleFatalError(OptimizationError):
    """Anything escaping a cycle, caught at the controller."""

    def __init__(self, run_id: str, cause: BaseException):
        super().__init__(f"Cycle {run_id} failed: {type(cause).__name__}: {cause}")
        self.run_id = run_id
        self.cause = cause
