# tests/conftest.py
import pytest

from smart_insights import db as dbmod


@pytest.fixture
def app_db(tmp_path):
    """Point the app database at a disposable SQLite file."""
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'app.db'}")
    dbmod.init_db()
    yield dbmod
    dbmod.engine.dispose()
