from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

"""Environment helper utilities.

Loads a `.env` file from the project root so that optimizer settings
(``PROFIT_OPT_*``) defined there become available via ``os.getenv``, and
parses typed values out of an environment mapping.
"""

__all__ = ["load_project_dotenv", "env_bool", "env_int", "env_float"]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _find_project_root(start: Path | None = None) -> Path:
    """Traverse upwards until we find a directory that contains `pyproject.toml`."""
    current = start or Path(__file__).resolve().parent
    for _ in range(10):  # safety break
        if (current / "pyproject.toml").exists():
            return current
        if current.parent == current:
            break
        current = current.parent
    return Path(__file__).resolve().parent


def load_project_dotenv() -> None:
    """Load environment variables from the project-level `.env` if present."""
    project_root = _find_project_root()
    dotenv_path = project_root / ".env"
    if dotenv_path.exists():
        load_dotenv(dotenv_path=dotenv_path, override=False)


def env_bool(environ: dict[str, str], key: str, default: bool) -> bool:
    raw = environ.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{key}={raw!r} is not a boolean")


def env_int(environ: dict[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    return default if raw is None else int(raw)


def env_float(environ: dict[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    return default if raw is None else float(raw)
