import itertools
import os
import sys
import uuid

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import CrossCheckEntry, IndividualBagEntry, RunInputs


PRIMARY_KEYS = {
    'customers': 'customer_id',
    'orders': 'order_id',
    'machine_runs': 'machine_run_id',
    'individual_bags': 'bag_id',
    'cross_checks': 'cross_check_id',
}


class FakeAPIError(Exception):
    """Shape of postgrest.exceptions.APIError"""

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


def _split_top_level(select):
    parts, depth, current = [], 0, ''
    for ch in select:
        if ch == ',' and depth == 0:
            parts.append(current.strip())
            current = ''
            continue
        depth += ch == '('
        depth -= ch == ')'
        current += ch
    if current.strip():
        parts.append(current.strip())
    return parts


def _parse_select(select):
    items = []
    for part in _split_top_level(select):
        if '(' not in part:
            items.append(part)
            continue
        head, inner = part.split('(', 1)
        alias, _, table = head.partition(':')
        items.append((alias.strip(), (table or alias).strip(), _parse_select(inner[:-1])))
    return items


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table_name = table
        self.action = 'select'
        self.payload = None
        self.select_items = ['*']
        self.count_mode = None
        self.filters = []
        self.order_by = None
        self.desc = False
        self.limit_n = None
        self.range_bounds = None

    # builders
    def select(self, columns='*', count=None):
        self.select_items = _parse_select(columns)
        self.count_mode = count
        return self

    def insert(self, payload):
        self.action, self.payload = 'insert', payload
        return self

    def update(self, payload):
        self.action, self.payload = 'update', payload
        return self

    def delete(self):
        self.action = 'delete'
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by, self.desc = column, desc
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    # execution
    def _matches(self, row):
        return all(row.get(col) == value for col, value in self.filters)

    def _embed(self, row, table, items):
        if '*' in items:
            out = dict(row)
        else:
            out = {col: row.get(col) for col in items if isinstance(col, str)}

        for item in items:
            if isinstance(item, str):
                continue
            alias, child_table, inner = item
            child_pk = PRIMARY_KEYS[child_table]
            if child_pk in row:
                match = next((r for r in self.client.tables[child_table]
                              if r[child_pk] == row[child_pk]), None)
                out[alias] = self._embed(match, child_table, inner) if match else None
            else:
                parent_pk = PRIMARY_KEYS[table]
                out[alias] = [
                    self._embed(r, child_table, inner)
                    for r in self.client.tables[child_table]
                    if r.get(parent_pk) == row[parent_pk]
                ]
        return out

    def execute(self):
        self.client.executed.append((self.table_name, self.action))
        if self.client.failures:
            raise self.client.failures.pop(0)

        rows = self.client.tables[self.table_name]

        if self.action == 'insert':
            records = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for record in records:
                row = dict(record)
                row.setdefault(PRIMARY_KEYS[self.table_name], str(uuid.uuid4()))
                row.setdefault('created_at', f"2025-01-01T00:00:{next(self.client.clock):04d}")
                rows.append(row)
                inserted.append(dict(row))
            return FakeResponse(inserted)

        matched = [row for row in rows if self._matches(row)]

        if self.action == 'update':
            for row in matched:
                row.update(self.payload)
            return FakeResponse([dict(row) for row in matched])

        if self.action == 'delete':
            self.client.tables[self.table_name] = [row for row in rows if not self._matches(row)]
            return FakeResponse([dict(row) for row in matched])

        if self.order_by:
            matched = sorted(
                matched,
                key=lambda r: (r.get(self.order_by) is None, r.get(self.order_by)),
                reverse=self.desc
            )
        count = len(matched) if self.count_mode else None
        if self.range_bounds:
            start, end = self.range_bounds
            matched = matched[start:end + 1]
        if self.limit_n is not None:
            matched = matched[:self.limit_n]

        data = [self._embed(row, self.table_name, self.select_items) for row in matched]
        return FakeResponse(data, count)


class FakeSupabase:
    """In-memory stand-in for supabase.Client (table/select/eq/... chains)"""

    def __init__(self):
        self.tables = {name: [] for name in PRIMARY_KEYS}
        self.executed = []
        self.failures = []
        self.clock = itertools.count()

    def table(self, name):
        return FakeQuery(self, name)

    def fail_next(self, *errors):
        self.failures.extend(errors)


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def no_sleep(monkeypatch):
    """Record retry waits instead of sleeping"""
    waits = []
    monkeypatch.setattr('utils.time.sleep', waits.append)
    return waits


@pytest.fixture
def example_inputs():
    """Two bags, 50g packaging, 60g powder, 200ml water to add"""
    return RunInputs(
        mama_name='Test Mama',
        mama_nric='S0000000Z',
        date_expressed='2025-01-02',
        bags=(
            IndividualBagEntry(id='bag-1', date='2025-01-02', weight='500'),
            IndividualBagEntry(id='bag-2', date='2025-01-02', weight='300'),
        ),
        bags_weight='50',
        powder_weight='60',
        water_to_add='200',
    )


@pytest.fixture
def example_cross_checks():
    return (
        CrossCheckEntry(id='check-1', powder_weight='10', quantity='5'),
        CrossCheckEntry(id='check-2', powder_weight='8', quantity='3'),
    )
