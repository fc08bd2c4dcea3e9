"""
Shared fixtures. The environment is pinned before anything imports
settings, so importing `main` never tries to reach a real backend.
"""
import os
import sys
import tempfile

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

os.environ["STORAGE_BACKEND"] = "none"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="lumbertrack-tests-")
os.environ["COMMENTARY_URL"] = ""

import pytest

from adapters.json import JsonHistoryStore
from core.ledger import LedgerConfig
from fakes import FakeShiftStore, FrozenClock, make_product


@pytest.fixture
def plank():
    """800x60x40 at 150: the reference product."""
    return make_product("p1", "Plank", 150, 800, 60, 40)


@pytest.fixture
def handle():
    return make_product("p2", "Axe handle", 90, 400, 40, 30)


@pytest.fixture
def history(tmp_path):
    return JsonHistoryStore(data_dir=str(tmp_path))


@pytest.fixture
def store(plank, handle):
    return FakeShiftStore(products=[plank, handle])


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def config():
    return LedgerConfig(ai_analysis_enabled=False)
