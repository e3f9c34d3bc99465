import os

os.environ.setdefault("SANDBOX_DATABASE_URL", "sqlite://")
os.environ.setdefault("SANDBOX_PUBLIC_KEY", "pub_sbx")
os.environ.setdefault("SANDBOX_PRIVATE_KEY", "prv_sbx")
os.environ.setdefault("SANDBOX_INTEGRITY_SECRET", "integrity_sbx")
os.environ.setdefault("SANDBOX_EVENTS_SECRET", "events_sbx")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
import repo  # noqa: E402


@pytest.fixture
def api():
    repo.Base.metadata.drop_all(repo.engine)
    repo.init_db()
    return TestClient(main.app)


@pytest.fixture
def auth():
    return {"Authorization": f"Bearer {main.PRIVATE_KEY}"}
