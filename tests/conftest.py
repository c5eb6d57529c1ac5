import os
import sys
import asyncio

import pytest

# Make the flat project modules importable regardless of where pytest is run from.
root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if root_dir not in sys.path:
    sys.path.insert(0, root_dir)

from storage import Database, KeyValueStore, SHARED_SCOPE  # noqa: E402


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "test.db"))
    run(database.init_db())
    return database


@pytest.fixture
def shared_kv(db):
    return KeyValueStore(db, SHARED_SCOPE)


@pytest.fixture
def client(tmp_path, monkeypatch):
    from fastapi.testclient import TestClient

    import main

    monkeypatch.setattr(main.db, "path", str(tmp_path / "app.db"))
    main.LOGIN_ATTEMPTS.clear()
    with TestClient(main.app) as c:
        yield c
    main.LOGIN_ATTEMPTS.clear()
