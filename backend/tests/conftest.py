import os
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# The API tests import the module-level store; point it at a throwaway database.
os.environ.setdefault(
    "SCHEDULE_DB_PATH",
    str(Path(tempfile.mkdtemp(prefix="slotwise-tests-")) / "schedule.sqlite3"),
)
os.environ["SCHEDULE_SEED_DEMO"] = "true"
os.environ["ADMIN_USER_IDS"] = "admin_1"
for name in ("OPENAI_API_KEY", "FIREBASE_CREDENTIALS_PATH", "SMTP_HOST", "AUTH_REQUIRED"):
    os.environ.pop(name, None)

from app.services.schedule_store import ScheduleStore  # noqa: E402


@pytest.fixture
def store(tmp_path):
    return ScheduleStore(db_path=str(tmp_path / "schedule.sqlite3"), seed_demo=True)
