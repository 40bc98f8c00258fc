"""
Result types separating accepted, rejected, recoverable and fatal conditions.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Accepted:
    """The item passed every guardrail."""

    accepted: bool = True


@dataclass(frozen=True)
class Rejected:
    """A guardrail blocked the item. Expected business outcome, never raised."""

    guardrail: str
    reason: str
    accepted: bool = False


@dataclass(frozen=True)
class Recoverable:
    """A degraded signal; the cycle continues with reduced confidence."""

    source: str
    reason: str


@dataclass(frozen=True)
class Fatal:
    """Malformed input. Distinct from a rejection."""

    reason: str
    accepted: bool = False


ValidationOutcome = Accepted | Rejected | Fatal
