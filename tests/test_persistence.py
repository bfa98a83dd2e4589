# tests/test_persistence.py
"""
Responses and configurations live in the app DB, not in process memory.
Uses a disposable SQLite DB for isolation.
"""
import os

import pytest

from smart_insights import db as dbmod
from smart_insights.config_store import ConfigStore
from smart_insights.response_log import ResponseLog
from smart_insights.schemas import DatabaseConfig

TEST_DB_FILE = "./test_smart_insights.db"
TEST_DB_URL = f"sqlite:///{TEST_DB_FILE}"


@pytest.fixture(autouse=True)
def fresh_db():
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)
    dbmod.reconfigure(TEST_DB_URL)
    dbmod.init_db()
    yield
    dbmod.engine.dispose()
    if os.path.exists(TEST_DB_FILE):
        os.remove(TEST_DB_FILE)


def test_response_survives_new_log_instance():
    first = ResponseLog()
    first.create("persist-1", "How many orders last week?")
    first.append_update("persist-1", "debug_log", "Query returned 12 rows")
    first.set_status("persist-1", "failed", False)

    second = ResponseLog()
    rec = second.get("persist-1")
    assert rec.status == "failed"
    assert rec.success is False
    assert [u.text for u in rec.response][-1] == "Query returned 12 rows"


def test_timestamps_are_utc_iso_on_the_wire():
    log = ResponseLog()
    log.create("persist-2", "q")
    wire = log.get("persist-2").model_dump(mode="json")
    ts = wire["response"][0]["timestamp"]
    assert ts.endswith("Z") or ts.endswith("+00:00")


def test_config_survives_new_store_instance():
    ConfigStore().save_database_config(DatabaseConfig(name="sales_db", host="db.local", db_name="sales"))
    assert ConfigStore().load_database_config("sales_db").host == "db.local"
