# tests/conftest.py
# Ensure project root is on sys.path so `import crew_engine` works reliably in pytest.
import sys
from pathlib import Path

import pytest

# Resolve project root as the parent of the tests folder
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    # put project root at front so local packages take precedence
    sys.path.insert(0, str(ROOT))

from crew_engine.load_rules import DEFAULT_RULES_DIR, load_rule_book  # noqa: E402
from crew_engine.store import InMemoryCrewStore  # noqa: E402

SAMPLE_DATA = ROOT / "data" / "sample_crew.json"


@pytest.fixture(scope="session")
def rule_book():
    return load_rule_book(DEFAULT_RULES_DIR)


@pytest.fixture
def rules_dir():
    return DEFAULT_RULES_DIR


@pytest.fixture
def sample_store():
    return InMemoryCrewStore.from_json(SAMPLE_DATA)


@pytest.fixture
def crew_store():
    return InMemoryCrewStore()


@pytest.fixture
def api_client(crew_store):
    """TestClient over crew_store (override per module); the lifespan runs on enter."""
    from fastapi.testclient import TestClient

    from crew_engine.main import create_app
    from crew_engine.settings import Settings

    with TestClient(create_app(Settings(rules_dir=DEFAULT_RULES_DIR), crew_store)) as client:
        yield client
