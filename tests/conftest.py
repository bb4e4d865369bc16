#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
    tests.conftest
    ~~~~~~~~~~~~~~

    Shared fixtures: a throwaway SQLite database per test, a clock the
    tests can move, and an engine wired to both.

    :copyright: (c) 2025 by Authors.
    :license: see LICENSE for more details.
"""

import os
os.environ.setdefault("TESTING", "true")

import datetime
import pytest
from lending.core.db import Base, make_engine, make_session_factory, init
from lending.core.engine import LendingEngine

NOW = datetime.datetime(2026, 3, 2, 10, 0, 0)


class FakeClock:

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, days=0, **kwargs):
        self.now += datetime.timedelta(days=days, **kwargs)
        return self.now


@pytest.fixture
def db_engine(tmp_path):
    engine = make_engine(
        f"sqlite:///{tmp_path / 'lending.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30})
    init(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def lending(session_factory, clock):
    return LendingEngine(session_factory=session_factory, clock=clock, retry_backoff=0)


@pytest.fixture
def item(lending):
    return lending.catalog.add_item("9780134685479", "Effective Python", total_copies=1)


@pytest.fixture
def patron(lending):
    return lending.patrons.enroll("M-0001", "Ada Lovelace", "Ada@Lovelace.org")
