from __future__ import annotations

from collections import defaultdict

import pytest
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import BinaryExpression, BindParameter, False_, Null, True_


def _literal(element):
    if isinstance(element, BindParameter):
        return element.value
    if isinstance(element, Null):
        return None
    if isinstance(element, True_):
        return True
    if isinstance(element, False_):
        return False
    raise AssertionError(f"Unsupported literal in filter: {element!r}")


_COMPARATORS = {
    operators.eq: lambda a, b: a == b,
    operators.ne: lambda a, b: a != b,
    operators.is_: lambda a, b: a is b,
    operators.is_not: lambda a, b: a is not b,
    operators.in_op: lambda a, b: a in b,
    operators.not_in_op: lambda a, b: a not in b,
    operators.lt: lambda a, b: a is not None and a < b,
    operators.le: lambda a, b: a is not None and a <= b,
    operators.gt: lambda a, b: a is not None and a > b,
    operators.ge: lambda a, b: a is not None and a >= b,
}


def _matches(record, criterion) -> bool:
    if not isinstance(criterion, BinaryExpression):
        raise AssertionError(f"Unsupported filter criterion: {criterion!r}")
    compare = _COMPARATORS.get(criterion.operator)
    if compare is None:
        raise AssertionError(f"Unsupported operator: {criterion.operator}")
    actual = getattr(record, criterion.left.key, None)
    return compare(actual, _literal(criterion.right))


class _QueryStub:
    """Evaluates simple column comparisons against in-memory records."""

    def __init__(self, session, records, *, scalar_result=None):
        self._session = session
        self._records = list(records)
        self._scalar_result = scalar_result
        self.locked = False

    def filter(self, *criteria):
        self._records = [r for r in self._records if all(_matches(r, c) for c in criteria)]
        return self

    def join(self, *_args, **_kwargs):
        return self

    def order_by(self, *_args):
        return self

    def limit(self, _n):
        return self

    def with_for_update(self, **_kwargs):
        self.locked = True
        self._session.lock_calls += 1
        return self

    def first(self):
        return self._records[0] if self._records else None

    def all(self):
        return list(self._records)

    def scalar(self):
        return self._scalar_result


class _SessionStub:
    def __init__(self):
        self.rows = defaultdict(list)
        self.added = []
        self.deleted = []
        self.commit_calls = 0
        self.rollback_calls = 0
        self.flush_calls = 0
        self.lock_calls = 0
        self.fail_commit_with = None

    def seed(self, model, *records):
        self.rows[model].extend(records)
        return records[0] if len(records) == 1 else records

    def query(self, model):
        if isinstance(model, type):
            return _QueryStub(self, self.rows[model])
        # Aggregate expressions such as func.max(...)
        return _QueryStub(self, [], scalar_result=None)

    def add(self, obj):
        self.added.append(obj)
        self.rows[type(obj)].append(obj)

    def delete(self, obj):
        self.deleted.append(obj)
        for records in self.rows.values():
            if obj in records:
                records.remove(obj)

    def flush(self):
        self.flush_calls += 1

    def commit(self):
        if self.fail_commit_with is not None:
            raise self.fail_commit_with
        self.commit_calls += 1

    def rollback(self):
        self.rollback_calls += 1

    def added_of(self, model):
        return [obj for obj in self.added if isinstance(obj, model)]


@pytest.fixture
def db():
    return _SessionStub()
