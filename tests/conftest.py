"""
Shared fixtures: an in-memory DB-API connection and the bundled pricing catalog.
"""
import sys

import pytest
from loguru import logger

from serverless_cost_calculator.config.loader import load_pricing_catalog

GIB = 1024 ** 3


class FakeCursor:
    """Cursor answering queries from its connection's canned responses."""

    def __init__(self, connection):
        self.connection = connection
        self._rows = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, sql, params=None):
        self.connection.queries.append((sql, params))
        self._rows = list(self.connection.respond(sql, params))

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    """DB-API connection whose responses are keyed by a substring of the SQL.

    A response is a list of rows, an exception to raise, or a callable
    taking the query parameters and returning either of those.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.queries = []
        self.closed = False

    def respond(self, sql, params):
        for key, result in self.responses.items():
            if key in sql:
                if callable(result):
                    result = result(params)
                if isinstance(result, Exception):
                    raise result
                return result
        raise AssertionError(f"Unexpected query: {sql}")

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


class FakeClock:
    """Monotonic clock advanced only by the fake sleeper."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.now += seconds
        return False


@pytest.fixture
def reset_logging():
    """Restore the default loguru sink after tests that reconfigure it."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def catalog():
    return load_pricing_catalog()


@pytest.fixture
def us_east(catalog):
    return catalog.get_region("us-east-1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_connection():
    """Factory for a fake source database holding the given tables.

    ``tables`` are information_schema.TABLES rows:
    (name, engine, rows, avg_row_length, data_length, index_length).
    ``indexes`` maps a table name to information_schema.STATISTICS rows:
    (index_name, column_name, cardinality).
    """
    def _make(tables=(), indexes=None, version="8.0.36", schema_exists=True, extra=None):
        indexes = indexes or {}
        responses = {
            "VERSION()": [(version,)],
            "information_schema.SCHEMATA": [("shop",)] if schema_exists else [],
            "information_schema.TABLES": list(tables),
            "information_schema.STATISTICS": lambda params: indexes.get(params[1], []),
        }
        responses.update(extra or {})
        return FakeConnection(responses)
    return _make
