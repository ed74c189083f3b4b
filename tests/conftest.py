# -*- coding: utf-8 -*-
"""
FIXTURES PARTILHADAS
=======================================
FakeSupabase: implementação em memória do query builder do
supabase-py (table/schema/rpc/storage), suficiente para exercitar os
managers sem ligação à base de dados.
"""

import copy
import re
import uuid
from datetime import datetime, timezone

import pytest


class FakeResult:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


def _as_timestamp(value):
    """Timestamps ISO com fuso são comparados como instantes, como no Postgres."""
    if not isinstance(value, str) or len(value) < 19 or value[10] != "T":
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _comparable(a, b):
    if isinstance(a, bool) or isinstance(b, bool):
        return a, b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a, b
    ta, tb = _as_timestamp(a), _as_timestamp(b)
    if ta and tb:
        return ta, tb
    return str(a), str(b)


def _eq(value, expected):
    if value is None or expected is None:
        return False
    a, b = _comparable(value, expected)
    return a == b


def _cmp(value, expected, op):
    if value is None or expected is None:
        return False
    a, b = _comparable(value, expected)
    return {"gt": a > b, "gte": a >= b, "lt": a < b, "lte": a <= b}[op]


def _ilike(value, pattern):
    if value is None:
        return False
    regex = "".join(".*" if c == "%" else "." if c == "_" else re.escape(c) for c in str(pattern))
    return re.fullmatch(regex, str(value), flags=re.IGNORECASE | re.DOTALL) is not None


def _parse_or(expression):
    """'a.ilike.%x%,b.eq.y,c.is.null' → lista de predicados."""
    predicates = []
    for part in expression.split(","):
        column, op, value = part.split(".", 2)
        if op == "is":
            predicates.append(lambda row, c=column: row.get(c) is None)
        elif op == "ilike":
            predicates.append(lambda row, c=column, v=value: _ilike(row.get(c), v))
        elif op == "eq":
            predicates.append(lambda row, c=column, v=value: row.get(c) is not None and str(row.get(c)) == v)
        elif op == "neq":
            predicates.append(lambda row, c=column, v=value: row.get(c) is not None and str(row.get(c)) != v)
        elif op in ("gt", "gte", "lt", "lte"):
            predicates.append(lambda row, c=column, v=value, o=op: _cmp(row.get(c), v, o))
        else:
            raise NotImplementedError(f"or_: operador {op} não suportado")
    return lambda row: any(p(row) for p in predicates)


class FakeQuery:
    def __init__(self, db, key):
        self.db = db
        self.key = key
        self.op = "select"
        self.columns = "*"
        self.count_mode = None
        self.payload = None
        self.on_conflict = None
        self.filters = []
        self.orders = []
        self.range_bounds = None
        self.limit_n = None

    # --- operações ---------------------------------------------------

    def select(self, columns="*", count=None):
        self.columns = columns
        self.count_mode = count
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def update(self, changes):
        self.op, self.payload = "update", changes
        return self

    def upsert(self, rows, on_conflict=None):
        self.op, self.payload, self.on_conflict = "upsert", rows, on_conflict
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filtros -----------------------------------------------------

    def _add(self, predicate):
        self.filters.append(predicate)
        return self

    def eq(self, column, value):
        return self._add(lambda row: _eq(row.get(column), value))

    def neq(self, column, value):
        return self._add(lambda row: row.get(column) is not None and not _eq(row.get(column), value))

    def in_(self, column, values):
        values = list(values)
        return self._add(lambda row: any(_eq(row.get(column), v) for v in values))

    def gt(self, column, value):
        return self._add(lambda row: _cmp(row.get(column), value, "gt"))

    def gte(self, column, value):
        return self._add(lambda row: _cmp(row.get(column), value, "gte"))

    def lt(self, column, value):
        return self._add(lambda row: _cmp(row.get(column), value, "lt"))

    def lte(self, column, value):
        return self._add(lambda row: _cmp(row.get(column), value, "lte"))

    def ilike(self, column, pattern):
        return self._add(lambda row: _ilike(row.get(column), pattern))

    def is_(self, column, value):
        if value in ("null", None):
            return self._add(lambda row: row.get(column) is None)
        return self._add(lambda row: row.get(column) is not None)

    def contains(self, column, values):
        return self._add(lambda row: all(v in (row.get(column) or []) for v in values))

    def or_(self, expression):
        return self._add(_parse_or(expression))

    # --- modificadores -----------------------------------------------

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    # --- execução ----------------------------------------------------

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        cols = [c.strip() for c in self.columns.split(",")]
        return {c: copy.deepcopy(row.get(c)) for c in cols}

    def execute(self):
        self.db.executed.append((self.key, self.op))
        table = self.db.tables.setdefault(self.key, [])

        if self.op == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.db.new_row(r) for r in rows]
            table.extend(created)
            return FakeResult(copy.deepcopy(created))

        if self.op == "upsert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            conflict = self.on_conflict or "id"
            out = []
            for r in rows:
                existing = next((t for t in table if conflict in r and _eq(t.get(conflict), r[conflict])), None)
                if existing:
                    existing.update(copy.deepcopy(r))
                    out.append(existing)
                else:
                    created = self.db.new_row(r)
                    table.append(created)
                    out.append(created)
            return FakeResult(copy.deepcopy(out))

        matched = [r for r in table if self._matches(r)]

        if self.op == "update":
            for r in matched:
                r.update(copy.deepcopy(self.payload))
            return FakeResult(copy.deepcopy(matched))

        if self.op == "delete":
            self.db.tables[self.key] = [r for r in table if r not in matched]
            return FakeResult(copy.deepcopy(matched))

        for column, desc in reversed(self.orders):
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            present.sort(key=lambda r: r[column], reverse=desc)
            matched = missing + present if desc else present + missing
        count = len(matched) if self.count_mode else None
        if self.range_bounds:
            start, end = self.range_bounds
            matched = matched[start:end + 1]
        if self.limit_n is not None:
            matched = matched[:self.limit_n]
        return FakeResult([self._project(r) for r in matched], count)


class FakeSchema:
    def __init__(self, db, name):
        self.db = db
        self.name = name

    def table(self, name):
        return FakeQuery(self.db, (self.name, name))

    def rpc(self, name, params=None):
        return FakeRpc(self.db, name, params or {}, schema=self.name)


class FakeRpc:
    def __init__(self, db, name, params, schema="public"):
        self.db = db
        self.name = name
        self.params = params
        self.schema = schema

    def execute(self):
        self.db.rpc_calls.append((self.name, self.params))
        self.db.rpc_schemas.append((self.schema, self.name))
        handler = self.db.rpc_handlers.get(self.name)
        return FakeResult(handler(self.params) if handler else None)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        self.storage.files[(self.name, path)] = file
        return {"path": path}

    def remove(self, paths):
        for p in paths:
            self.storage.files.pop((self.name, p), None)
        return [{"name": p} for p in paths]

    def create_signed_url(self, path, expires_in):
        if (self.name, path) not in self.storage.files:
            return {}
        return {"signedURL": f"https://storage.test/{self.name}/{path}?expires={expires_in}"}


class FakeStorage:
    def __init__(self):
        self.files = {}

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    """Cliente Supabase em memória (schema public + schemas nomeados)."""

    def __init__(self):
        self.tables = {}
        self.rpc_handlers = {}
        self.rpc_calls = []
        self.rpc_schemas = []
        self.executed = []
        self.storage = FakeStorage()

    def new_row(self, row):
        created = copy.deepcopy(row)
        created.setdefault("id", str(uuid.uuid4()))
        created.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return created

    def table(self, name):
        return FakeQuery(self, ("public", name))

    def schema(self, name):
        return FakeSchema(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params or {})

    # --- helpers de teste --------------------------------------------

    def seed(self, table, rows, schema="legalflow"):
        created = [self.new_row(r) for r in rows]
        self.tables.setdefault((schema, table), []).extend(created)
        return copy.deepcopy(created)

    def rows(self, table, schema="legalflow"):
        return copy.deepcopy(self.tables.get((schema, table), []))


@pytest.fixture
def fake_sb():
    return FakeSupabase()


@pytest.fixture
def user():
    return {"id": "user-1", "email": "advogado@escritorio.com.br", "is_admin": False}


@pytest.fixture
def admin_user():
    return {"id": "admin-1", "email": "admin@escritorio.com.br", "is_admin": True}
