import os
import sys

# Add src directory to PYTHONPATH for imports
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)
import tempfile

# Point every file the package writes at a throwaway directory for the test session
_tmp_dir = tempfile.mkdtemp(prefix="parley_test_")
os.environ['DATABASE_URL'] = f"sqlite:///{os.path.join(_tmp_dir, 'parley.db')}"
os.environ['PARLEY_STORAGE_FILE'] = os.path.join(_tmp_dir, "storage.json")
os.environ['PARLEY_USAGE_FILE'] = os.path.join(_tmp_dir, "usage.json")
os.environ['LOG_FILE'] = os.path.join(_tmp_dir, "parley.log")
os.environ['PARLEY_RESPONDER'] = "echo"
os.environ['PARLEY_AUTH_MODE'] = "anonymous"

import pytest
import pytest_asyncio

from parley_chat.config import ChatConfig
from parley_chat.db import Database
from parley_chat.core.event_bus import EventBus
from parley_chat.core.local_storage import LocalStorage
from parley_chat.core.store import ConversationStore


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'chat.db'}"


@pytest.fixture
def config(db_url):
    return ChatConfig(database_url=db_url, storage_path=None, responder="echo")


@pytest.fixture
def storage():
    return LocalStorage(None)


@pytest_asyncio.fixture
async def event_bus():
    bus = EventBus()
    await bus.start()
    yield bus
    await bus.stop()


@pytest_asyncio.fixture
async def database(db_url):
    db = Database(db_url)
    await db.ensure_schema()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def store(database, event_bus):
    return ConversationStore(database, event_bus)
