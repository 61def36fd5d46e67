from collections import defaultdict

import pytest


class _Result:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the PostgREST query builder for the repositories under test."""

    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.operation = "select"
        self.payload = None
        self.columns = None
        self.filters = []
        self.eq_calls = []
        self.row_limit = None

    def select(self, columns="*", **kwargs):
        self.columns = columns
        return self

    def insert(self, payload):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, values):
        self.operation = "update"
        self.payload = values
        return self

    def eq(self, column, value):
        self.eq_calls.append((column, value))
        if "." not in column:
            self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        self.filters.append(lambda row: row.get(column) in set(values))
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def execute(self):
        self.client.queries.append(self)
        if self.table in self.client.failing_tables:
            raise RuntimeError(f"{self.table} unavailable")
        rows = self.client.tables[self.table]
        if self.operation == "insert":
            rows.append(dict(self.payload))
            return _Result([dict(self.payload)])

        matched = [row for row in rows if all(check(row) for check in self.filters)]
        if self.operation == "update":
            for row in matched:
                row.update(self.payload)
        if self.row_limit is not None:
            matched = matched[: self.row_limit]
        return _Result([dict(row) for row in matched])


class FakeSupabase:
    def __init__(self):
        self.tables = defaultdict(list)
        self.queries = []
        self.failing_tables = set()

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def fake_supabase() -> FakeSupabase:
    return FakeSupabase()
