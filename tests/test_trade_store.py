# -*- coding: utf-8 -*-
"""
Trade Store Tests
=================

Tests for fx_governor/db/trade_store.py (sqlite3 stands in for MSSQL)
"""
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from fx_governor.backtest import TradeRecord, summarize
from fx_governor.db import InMemoryTradeStore, PersistOutcome, SqlTradeStore
from fx_governor.db.connection import check_connection, connection_string, get_cursor
from fx_governor.errors import PersistenceError


def make_records(n: int, variant: str = "v1"):
    base = datetime(2024, 2, 5, 8, 0)
    records = []
    for i in range(n):
        pips = 15.0 if i % 3 == 0 else -7.0
        opened = base + timedelta(minutes=30 * i)
        records.append(TradeRecord(
            record_id=f"bt-{variant}-EUR_USD-{i:05d}",
            variant_id=variant,
            pair="EUR_USD",
            direction="long" if i % 2 else "short",
            units=1000,
            entry_price=1.0850 + i * 0.0001,
            exit_price=1.0850 + i * 0.0001 + pips * 0.0001,
            pips=pips,
            opened_at=opened,
            closed_at=opened + timedelta(minutes=45, microseconds=123),
            triggered_gates=("G4_SPREAD_INSTABILITY",) if i % 5 == 0 else (),
            composite_score=0.1 * (i % 7),
            session="london-open",
            regime="expansion",
            spread_pips=0.55,
            slippage_pips=0.08,
            mfe_pips=3.2,
            mae_pips=1.1,
            exit_reason="tp" if pips > 0 else "sl",
        ))
    return records


def with_bad_rows(records):
    """3건을 비정상 수치로 교체"""
    out = list(records)
    out[10] = replace(out[10], pips=float("nan"))
    out[50] = replace(out[50], entry_price=float("inf"))
    out[99] = replace(out[99], composite_score=float("-inf"))
    return out


class _FailingSeqCursor:
    """특정 variant 의 seq 조회만 실패하는 cursor"""

    def __init__(self, cursor, variant):
        self._cursor = cursor
        self._variant = variant

    def execute(self, query, params=()):
        if "MAX(seq)" in query and self._variant in params:
            raise sqlite3.OperationalError("seq lookup failed")
        return self._cursor.execute(query, params)

    def __getattr__(self, name):
        return getattr(self._cursor, name)


class _FailingSeqConnection:
    def __init__(self, conn, variant):
        self._conn = conn
        self._variant = variant

    def cursor(self):
        return _FailingSeqCursor(self._conn.cursor(), self._variant)

    def __getattr__(self, name):
        return getattr(self._conn, name)


@pytest.fixture
def sql_store(tmp_path):
    path = tmp_path / "trades.db"
    return SqlTradeStore(lambda: sqlite3.connect(str(path)), dialect="sqlite")


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryTradeStore()
    path = tmp_path / "trades.db"
    return SqlTradeStore(lambda: sqlite3.connect(str(path)), dialect="sqlite")


class TestPersist:
    """row 단위 격리"""

    def test_bad_rows_isolated(self, store):
        outcome = store.persist(with_bad_rows(make_records(100)))
        assert outcome == PersistOutcome(inserted=97, errors=3)
        assert len(store.load("v1")) == 97

    def test_duplicate_id_is_row_error(self, store):
        records = make_records(5)
        store.persist(records)
        outcome = store.persist(records[:2] + make_records(8)[5:])
        assert outcome == PersistOutcome(inserted=3, errors=2)

    def test_clear_is_idempotent(self, store):
        store.persist(make_records(10))
        assert store.clear("v1") == 10
        assert store.clear("v1") == 0
        assert store.load("v1") == []

    def test_clear_only_variant(self, store):
        store.persist(make_records(4, "a") + make_records(3, "b"))
        store.clear("a")
        assert len(store.load("b")) == 3

    def test_load_preserves_order(self, store):
        records = make_records(20)
        store.persist(records[:10])
        store.persist(records[10:])
        assert [r.record_id for r in store.load("v1")] == [r.record_id for r in records]

    def test_summary_survives_roundtrip(self, store):
        records = make_records(40)
        store.persist(records)
        loaded = store.load("v1")
        assert loaded == records
        assert summarize(loaded) == summarize(records)


class TestSqlStore:
    def test_unopenable_store_raises(self):
        def broken():
            raise sqlite3.OperationalError("unable to open database file")

        with pytest.raises(PersistenceError):
            SqlTradeStore(broken, dialect="sqlite").persist(make_records(1))

    def test_unknown_dialect(self):
        with pytest.raises(ValueError):
            SqlTradeStore(lambda: None, dialect="oracle")

    def test_schema_created_once(self, sql_store):
        sql_store.ensure_schema()
        sql_store.ensure_schema()
        assert sql_store.count("v1") == 0

    def test_seq_lookup_failure_is_row_error(self, tmp_path):
        """MAX(seq) 조회 실패 -> 해당 variant row 만 error, 나머지는 저장"""
        path = tmp_path / "trades.db"
        store = SqlTradeStore(lambda: _FailingSeqConnection(sqlite3.connect(str(path)), "bad"),
                              dialect="sqlite")

        outcome = store.persist(make_records(3, "bad") + make_records(4, "good"))

        assert outcome == PersistOutcome(inserted=4, errors=3)
        assert store.count("good") == 4
        assert store.count("bad") == 0

    def test_reopened_store_reads_existing_rows(self, tmp_path):
        path = tmp_path / "trades.db"
        SqlTradeStore(lambda: sqlite3.connect(str(path)), dialect="sqlite").persist(make_records(6))
        reopened = SqlTradeStore(lambda: sqlite3.connect(str(path)), dialect="sqlite")
        assert reopened.count("v1") == 6


class TestConnection:
    """fx_governor/db/connection.py (sqlite factory 로 대체)"""

    def test_connection_string_requires_credentials(self, monkeypatch):
        monkeypatch.delenv("MSSQL_USER", raising=False)
        monkeypatch.delenv("MSSQL_PASSWORD", raising=False)
        with pytest.raises(PersistenceError):
            connection_string()

    def test_connection_string(self, monkeypatch):
        monkeypatch.setenv("MSSQL_USER", "fx")
        monkeypatch.setenv("MSSQL_PASSWORD", "secret")
        monkeypatch.setenv("MSSQL_SERVER", "db.local,1433")
        conn_str = connection_string()
        assert "SERVER=db.local,1433;" in conn_str
        assert "UID=fx;" in conn_str

    def test_cursor_commits_and_rolls_back(self, tmp_path):
        path = tmp_path / "cursor.db"
        factory = lambda: sqlite3.connect(str(path))  # noqa: E731

        with get_cursor(factory) as cursor:
            cursor.execute("CREATE TABLE t (x INTEGER)")
            cursor.execute("INSERT INTO t VALUES (1)")

        with pytest.raises(RuntimeError):
            with get_cursor(factory) as cursor:
                cursor.execute("INSERT INTO t VALUES (2)")
                raise RuntimeError("boom")

        with get_cursor(factory) as cursor:
            cursor.execute("SELECT COUNT(*) FROM t")
            assert cursor.fetchone()[0] == 1

    def test_check_connection(self, tmp_path):
        assert check_connection(lambda: sqlite3.connect(str(tmp_path / "ok.db")))

        def broken():
            raise sqlite3.OperationalError("no route")

        assert not check_connection(broken)
