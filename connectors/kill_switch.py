"""
Module: connectors.kill_switch

Kill switch signals polled by the cycle controller.
"""

import logging
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

KILL_SWITCH_FILES = ("KILL_SWITCH", "AUTONOMOUS_KILL_SWITCH")


class FileKillSwitch:
    """Active while either kill switch file exists in the storage directory."""

    def __init__(self, storage_dir: str | Path):
        self.storage_dir = Path(storage_dir)

    def is_active(self) -> bool:
        return any((self.storage_dir / name).exists() for name in KILL_SWITCH_FILES)

    def activate(self, reason: str = "manual stop") -> Path:
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        path = self.storage_dir / "AUTONOMOUS_KILL_SWITCH"
        path.write_text(f"{datetime.now().isoformat()} {reason}\n", encoding="utf-8")
        logger.warning(f"Kill switch activated at {path}: {reason}")
        return path

    def clear(self) -> None:
        for name in KILL_SWITCH_FILES:
            path = self.storage_dir / name
            if path.exists():
                path.unlink()
                logger.info(f"Kill switch cleared: {path}")


class ManualKillSwitch:
    """In-process switch, flipped by tests or an embedding application."""

    def __init__(self, active: bool = False):
        self.active = active

    def is_active(self) -> bool:
        return self.active


def kill_switch_engaged(switch) -> bool:
    """Poll a kill switch. A switch that cannot be read counts as engaged."""
    try:
        return bool(switch.is_active())
    except Exception as e:
        logger.error(f"Kill switch unreadable, treating it as active: {e}")
        return True
