"""
Module: connectors.history_store

Run history stores for per-cycle summary records.
"""

import logging
from pathlib import Path

import pandas as pd

from models.state import CycleResult

logger = logging.getLogger(__name__)


class InMemoryRunHistoryStore:
    """Keeps results in a list, newest last."""

    def __init__(self):
        self.results: list[CycleResult] = []

    def persist(self, result: CycleResult) -> str:
        self.results.append(result)
        return result.run_id

    def recent(self, limit: int = 10) -> list[CycleResult]:
        return list(reversed(self.results[-limit:])) if limit > 0 else []


class JsonlRunHistoryStore:
    """Appends one JSON line per cycle to a file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def persist(self, result: CycleResult) -> str:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(result.model_dump_json() + "\n")
        logger.debug(f"Persisted {result.run_id} to {self.path}")
        return result.run_id

    def recent(self, limit: int = 10) -> list[CycleResult]:
        if limit <= 0 or not self.path.exists():
            return []
        lines = [
            line
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
        return [CycleResult.model_validate_json(line) for line in reversed(lines[-limit:])]

    def summary_frame(self, limit: int = 10) -> pd.DataFrame:
        """Recent runs as a table, newest first."""
        return results_frame(self.recent(limit))


def results_frame(results: list[CycleResult]) -> pd.DataFrame:
    columns = [
        "run_id",
        "outcome",
        "transfers",
        "price_changes",
        "clearances",
        "failed",
        "profit_impact",
        "duration_s",
    ]
    rows = [
        {
            "run_id": r.run_id,
            "outcome": r.outcome.value,
            "transfers": r.transfers.executed,
            "price_changes": r.price_changes.executed,
            "clearances": r.clearances.executed,
            "failed": r.transfers.failed + r.price_changes.failed + r.clearances.failed,
            "profit_impact": round(r.total_profit_impact, 2),
            "duration_s": round(r.duration_seconds, 2),
        }
        for r in results
    ]
    return pd.DataFrame(rows, columns=columns)
