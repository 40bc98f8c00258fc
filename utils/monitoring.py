"""
Utilities for monitoring optimization cycles and raising alerts.
"""

import logging
from collections import defaultdict
from datetime import datetime

import numpy as np

from models.state import CycleResult

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS: dict[str, tuple[float, float]] = {
    "failure_rate_percent": (0.0, 50.0),
    "guardrail_skip_rate_percent": (0.0, 90.0),
}


class CycleMonitor:
    """Records per-cycle metrics, flags threshold breaches and detects drift."""

    def __init__(
        self,
        monitor_id: str = "profit_optimizer",
        metric_thresholds: dict[str, tuple[float, float]] | None = None,
    ):
        """
        Args:
            monitor_id: Name used in alert messages.
            metric_thresholds: Dict mapping metric names to (min_value, max_value) tuples.
        """
        self.monitor_id = monitor_id
        self.metric_thresholds = (
            dict(DEFAULT_THRESHOLDS) if metric_thresholds is None else metric_thresholds
        )
        # metric_name -> List[(timestamp, value)]
        self.metrics_history: dict[str, list[tuple[datetime, float]]] = defaultdict(list)
        self.alerts: list[str] = []

    def record_cycle(self, result: CycleResult) -> dict[str, float]:
        """Derive metrics from a cycle summary and record them."""
        attempted = result.action_count + sum(
            c.failed for c in (result.transfers, result.price_changes, result.clearances)
        )
        failed = attempted - result.action_count
        identified = sum(
            c.identified for c in (result.transfers, result.price_changes, result.clearances)
        )
        skipped = sum(
            c.skipped_by_guardrail
            for c in (result.transfers, result.price_changes, result.clearances)
        )
        metrics = {
            "actions": float(result.action_count),
            "failures": float(failed),
            "profit_impact": float(result.total_profit_impact),
            "duration_seconds": float(result.duration_seconds),
        }
        if attempted:
            metrics["failure_rate_percent"] = failed / attempted * 100
        if identified:
            metrics["guardrail_skip_rate_percent"] = skipped / identified * 100
        self.record_metrics(metrics, timestamp=result.finished_at)
        return metrics

    def record_metrics(
        self, metrics_dict: dict[str, float], timestamp: datetime | None = None
    ):
        """Record a set of metrics at a specific time."""
        ts = timestamp or datetime.now()
        for metric, value in metrics_dict.items():
            if not isinstance(value, int | float):
                logger.warning(
                    f"Metric '{metric}' for {self.monitor_id} has non-numeric value: {value}. Skipping."
                )
                continue

            self.metrics_history[metric].append((ts, value))

            if metric in self.metric_thresholds:
                min_val, max_val = self.metric_thresholds[metric]
                if not (min_val <= value <= max_val):
                    self.trigger_alert(metric, value, min_val, max_val)

            if self.detect_drift(metric):
                logger.warning(f"Drift detected for metric '{metric}' in {self.monitor_id}")

    def detect_drift(
        self, metric: str, window_size: int = 10, change_threshold_percent: float = 25.0
    ) -> bool:
        """Detect if a metric is drifting significantly from its previous window."""
        history = self.metrics_history.get(metric, [])
        if len(history) < window_size * 2:
            return False

        recent_avg = np.mean([v for _, v in history[-window_size:]])
        previous_avg = np.mean([v for _, v in history[-window_size * 2 : -window_size]])

        if previous_avg == 0:
            return bool(recent_avg != 0)

        percent_change = abs((recent_avg - previous_avg) / previous_avg) * 100
        return bool(percent_change > change_threshold_percent)

    def trigger_alert(
        self, metric: str, value: float, min_threshold: float, max_threshold: float
    ):
        message = (
            f"ALERT [{self.monitor_id}] - Metric '{metric}' value {value:.2f} "
            f"outside acceptable range [{min_threshold:.2f}, {max_threshold:.2f}]"
        )
        logger.warning(message)
        self.alerts.append(message)

    def recommend_adaptation(self) -> list[str]:
        """Suggest operator follow-ups from metric trends."""
        recommendations = []
        profit = self.metrics_history.get("profit_impact", [])
        if self.detect_drift("profit_impact") and self._is_decreasing(profit, 10):
            recommendations.append(
                "Profit impact per cycle is falling: review guardrail thresholds."
            )
        failures = self.metrics_history.get("failures", [])
        if failures and not self._is_decreasing(failures, 5) and failures[-1][1] > 0:
            recommendations.append(
                "Execution failures are not receding: check the execution services."
            )
        return recommendations

    def _is_decreasing(
        self, history: list[tuple[datetime, float]], window: int = 10
    ) -> bool:
        """Check if metric shows a decreasing trend using linear regression slope."""
        if len(history) < window:
            return False
        recent_values = [v for _, v in history[-window:]]
        indices = np.arange(len(recent_values))
        slope = np.polyfit(indices, recent_values, 1)[0]
        return bool(slope < 0)

    def summary(self) -> dict[str, float]:
        """Latest value of every recorded metric."""
        return {metric: values[-1][1] for metric, values in self.metrics_history.items() if values}
