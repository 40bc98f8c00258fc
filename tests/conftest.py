import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path to allow `import agents`, `import connectors`, etc.
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.mocks import FakeClock  # noqa: E402


@pytest.fixture
def clock() -> FakeClock:
    """Fake clock starting at 2024-03-01 09:00; sleeps advance it instantly."""
    return FakeClock()
