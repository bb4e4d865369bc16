#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.test_atomicity
    ~~~~~~~~~~~~~~~~~~~~

    A failure anywhere inside a unit of work must leave no trace: no
    counter change, no loan, no change log row.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import sqlite3

import pytest
from unittest.mock import patch
from sqlalchemy.exc import OperationalError
from lending.core.db import make_engine, make_session_factory
from lending.core.changelog import ChangeLogSink
from lending.core.engine import LendingEngine
from lending.core.models import Loan, ItemAudit
from lending.core.uow import is_transient
from lending.core.exceptions import (
    StorageError,
    TransientStorageError,
    BorrowLimitReached
)


class ExplodingSink(ChangeLogSink):

    def record(self, session, change):
        raise RuntimeError("change log unavailable")


def assert_untouched(lending, session_factory, item, patron):
    assert lending.catalog.get(item.id).available_copies == 1
    assert lending.active_loans(patron.id) == []
    assert lending.loan_history(item_id=item.id) == []
    session = session_factory()
    try:
        assert session.query(ItemAudit).filter(ItemAudit.item_id == item.id).count() == 1
    finally:
        session.close()


def test_fault_after_inventory_change_rolls_back(lending, session_factory, item, patron):
    with patch.object(Loan, 'open', side_effect=RuntimeError("process killed")):
        with pytest.raises(RuntimeError):
            lending.create_loan(patron.id, item.id)

    assert_untouched(lending, session_factory, item, patron)


def test_failing_sink_rolls_back(session_factory, clock, lending, item, patron):
    broken = LendingEngine(
        session_factory=session_factory, sink=ExplodingSink(), clock=clock, retry_backoff=0)

    with pytest.raises(RuntimeError, match="change log unavailable"):
        broken.create_loan(patron.id, item.id)

    assert_untouched(lending, session_factory, item, patron)


def test_constraint_violation_surfaces_as_storage_error(
        session_factory, clock, lending, item, patron):
    # renewal_count 0 > max_renewals_allowed -1 fails the loans CHECK constraint
    misconfigured = LendingEngine(
        session_factory=session_factory, clock=clock, max_renewals=-1, retry_backoff=0)

    with pytest.raises(StorageError) as excinfo:
        misconfigured.create_loan(patron.id, item.id)

    assert not isinstance(excinfo.value, TransientStorageError)
    assert str(excinfo.value) == "Storage failure during create_loan"
    assert_untouched(lending, session_factory, item, patron)


def test_conflicting_write_is_retried(lending, item, patron):
    count_open = Loan.count_open
    attempts = []

    def concurrent_intake(session, patron_id=None, item_id=None):
        # another desk changes the item between our read and our write
        if not attempts:
            lending.catalog.add_copies(item.id, 1)
        attempts.append(patron_id)
        return count_open(session, patron_id=patron_id, item_id=item_id)

    with patch.object(Loan, 'count_open', side_effect=concurrent_intake):
        loan = lending.create_loan(patron.id, item.id)

    assert len(attempts) == 2
    after = lending.catalog.get(item.id)
    assert (after.available_copies, after.total_copies) == (1, 2)
    assert [l.id for l in lending.active_loans(patron.id)] == [loan.id]


def test_retries_are_bounded(session_factory, clock, lending, item, patron):
    engine = LendingEngine(
        session_factory=session_factory, clock=clock, max_retries=3, retry_backoff=0)
    count_open = Loan.count_open

    def always_conflicting(session, patron_id=None, item_id=None):
        lending.catalog.add_copies(item.id, 1)
        return count_open(session, patron_id=patron_id, item_id=item_id)

    with patch.object(Loan, 'count_open', side_effect=always_conflicting):
        with pytest.raises(TransientStorageError) as excinfo:
            engine.create_loan(patron.id, item.id)

    assert excinfo.value.retryable is True
    assert excinfo.value.context == {"operation": "create_loan", "attempts": 3}
    after = lending.catalog.get(item.id)
    assert (after.available_copies, after.total_copies) == (4, 4)
    assert lending.active_loans(patron.id) == []


def test_business_errors_are_not_retried(lending, item):
    patron = lending.patrons.enroll(
        "M-0010", "One Book", "one@lovelace.org", max_items_allowed=1)
    other = lending.catalog.add_item("0306406152", "Other")
    lending.create_loan(patron.id, other.id)

    with patch.object(Loan, 'count_open', wraps=Loan.count_open) as counted:
        with pytest.raises(BorrowLimitReached):
            lending.create_loan(patron.id, item.id)

    assert counted.call_count == 1
    assert lending.catalog.get(item.id).available_copies == 1


def operational_error(message, **kwargs):
    return OperationalError("SELECT 1", {}, sqlite3.OperationalError(message), **kwargs)


@pytest.mark.parametrize("error, transient", [
    (operational_error("database is locked"), True),
    (operational_error("no such table: loans"), False),
    (operational_error("server closed the connection", connection_invalidated=True), True),
])
def test_transient_classification(error, transient):
    assert is_transient(error) is transient


def test_lock_timeout_is_retried(lending, item, patron):
    count_open = Loan.count_open
    attempts = []

    def locked_once(session, patron_id=None, item_id=None):
        attempts.append(patron_id)
        if len(attempts) == 1:
            raise operational_error("database is locked")
        return count_open(session, patron_id=patron_id, item_id=item_id)

    with patch.object(Loan, 'count_open', side_effect=locked_once):
        loan = lending.create_loan(patron.id, item.id)

    assert len(attempts) == 2
    assert [l.id for l in lending.active_loans(patron.id)] == [loan.id]


def test_missing_schema_is_not_retried(tmp_path):
    bare = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    factory = make_session_factory(bare)
    sessions = []

    def counting_factory():
        sessions.append(1)
        return factory()

    engine = LendingEngine(session_factory=counting_factory, max_retries=3, retry_backoff=0)
    try:
        with pytest.raises(StorageError) as excinfo:
            engine.create_loan(1, 1)
    finally:
        bare.dispose()

    assert not isinstance(excinfo.value, TransientStorageError)
    assert excinfo.value.retryable is False
    assert str(excinfo.value) == "Storage failure during create_loan"
    assert len(sessions) == 1
