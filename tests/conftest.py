import sys
from pathlib import Path

import pytest

# Ensure the project root (containing the coprocs package) is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


@pytest.fixture
def manager():
    from coprocs.core.process_manager import ProcessManager

    pm = ProcessManager(PROJECT_ROOT)
    yield pm
    pm.close_all(grace=2.0)
