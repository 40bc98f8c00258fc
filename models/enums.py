"""
Centralized Enum definitions for the project.
"""

from enum import Enum


class AgentType(str, Enum):
    """Components of the optimization loop that publish events"""

    MARKET_SIGNALS = "market_signals"
    COMPETITIVE = "competitive_analyzer"
    DECISION_MATRIX = "decision_matrix"
    GUARDRAIL = "guardrail_validator"
    TRANSFER = "transfer_executor"
    PRICING = "pricing_executor"
    CONTROLLER = "cycle_controller"
    SYSTEM = "system"


class Priority(int, Enum):
    """Opportunity priority; the integer value drives sort order"""

    LOW = 1
    MEDIUM = 2
    HIGH = 3


class OpportunityType(str, Enum):
    """Tags of the opportunity variant"""

    TRANSFER = "transfer"
    PRICE_CHANGE = "price_change"
    CLEARANCE = "clearance"


class TrendDirection(str, Enum):
    UP = "up"
    FLAT = "flat"
    DOWN = "down"


class PriceGapClass(str, Enum):
    """Classification of a price gap against one competitor"""

    THREAT = "threat"
    OPPORTUNITY = "opportunity"
    NEUTRAL = "neutral"


class GapLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    NONE = "none"


class MarketPosition(str, Enum):
    PREMIUM = "premium"
    ABOVE_MARKET = "above_market"
    COMPETITIVE = "competitive"
    BELOW_MARKET = "below_market"
    DISCOUNT = "discount"


class MarketSentiment(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class CompetitorDataSource(str, Enum):
    """Where a competitor dataset came from"""

    SNAPSHOT = "snapshot"  # Fresh enough, served from the collaborator cache
    CRAWL = "crawl"  # Newly crawled this cycle
    LAST_KNOWN = "last_known"  # Crawl failed, previous dataset reused
    NONE = "none"  # Nothing available at all


class SnapshotState(str, Enum):
    """Sentinel returned by a competitor snapshot that is older than requested"""

    STALE = "STALE"


STALE = SnapshotState.STALE


class ExecutionStatus(str, Enum):
    """Per-item execution state machine"""

    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    EXECUTING = "EXECUTING"
    EXECUTED = "EXECUTED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # Rejected by a guardrail
    DEFERRED = "DEFERRED"  # Cap reached, kill switch or stop
    SIMULATED = "SIMULATED"  # Dry run


class ControllerState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    SLEEPING = "SLEEPING"
    STOPPED = "STOPPED"


class CycleOutcome(str, Enum):
    """Summary label derived from the per-type counters of a cycle"""

    NOTHING_TO_DO = "nothing_to_do"
    GUARDRAILS_BLOCKED = "guardrails_blocked"
    EXECUTION_BROKEN = "execution_broken"
    PARTIAL_FAILURE = "partial_failure"
    DRY_RUN = "dry_run"
    INTERRUPTED = "interrupted"
    COMPLETED = "completed"
