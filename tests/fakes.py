# tests/fakes.py
"""In-memory stand-ins for providers, connectors and the two registries."""
import threading
import time

from smart_insights.connectors.sql_connector import (
    ColumnInfo, QueryResult, SchemaInfo, SourceConnector, TableInfo,
)
from smart_insights.errors import ConfigNotFoundError
from smart_insights.llm_providers import Completion, TokenUsage

SALES_SCHEMA = SchemaInfo(tables=[
    TableInfo(
        name="products",
        columns=[
            ColumnInfo("id", "INTEGER", nullable=False),
            ColumnInfo("name", "VARCHAR(100)", nullable=False),
            ColumnInfo("qty", "INTEGER"),
        ],
        primary_key=["id"],
    ),
])

TOP_PRODUCTS = [
    {"name": "Widget", "sum": 120},
    {"name": "Gadget", "sum": 95},
    {"name": "Doohickey", "sum": 80},
    {"name": "Gizmo", "sum": 42},
    {"name": "Thingamajig", "sum": 17},
]


class ConcurrencyTracker:
    """Counts how many orchestrations are inside a provider call at once."""

    def __init__(self):
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def enter(self):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)

    def exit(self):
        with self._lock:
            self.current -= 1


class FakeProvider:
    """Returns scripted replies in order. An Exception in the script is raised instead."""
    kind = "fake"

    def __init__(self, replies, delay=0.0, tracker=None):
        self.replies = list(replies)
        self.delay = delay
        self.tracker = tracker
        self.calls = []
        self.closed = False

    def complete(self, messages, max_tokens=None, temperature=0.0):
        self.calls.append({"messages": messages, "temperature": temperature})
        if self.tracker:
            self.tracker.enter()
        try:
            if self.delay:
                time.sleep(self.delay)
            reply = self.replies.pop(0) if self.replies else ""
        finally:
            if self.tracker:
                self.tracker.exit()
        if isinstance(reply, Exception):
            raise reply
        return Completion(content=reply, usage=TokenUsage(prompt_tokens=11, completion_tokens=7), model="fake")

    def close(self):
        self.closed = True


class FakeConnector(SourceConnector):
    def __init__(self, name="sales_db", schema=SALES_SCHEMA, rows=None, error=None):
        self.name = name
        self.schema = schema
        self.rows = TOP_PRODUCTS if rows is None else rows
        self.error = error
        self.executed = []

    def inspect_schema(self):
        return self.schema

    def execute_query(self, sql):
        self.executed.append(sql)
        if self.error:
            raise self.error
        columns = list(self.rows[0].keys()) if self.rows else []
        return QueryResult(columns=columns, rows=list(self.rows))


class FakeSourceRegistry:
    def __init__(self, connectors=None):
        self.connectors = dict(connectors or {})

    def resolve(self, name):
        if name not in self.connectors:
            raise ConfigNotFoundError(f"database configuration '{name}' not found")
        return self.connectors[name]


class FakeLLMRegistry:
    """Hands out a new provider per resolve() from `factory`."""

    def __init__(self, factory):
        self.factory = factory
        self.resolved = []

    def resolve(self, kind, config_name):
        provider = self.factory()
        self.resolved.append((kind, config_name, provider))
        return provider
