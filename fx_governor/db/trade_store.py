"""
Trade Record Store
==================

백테스트 TradeRecord 저장/조회.

핵심 원칙:
- persist(records) -> PersistOutcome(inserted, errors)
  row 단위 격리: 한 건 실패(비정상 수치, DB 에러, 중복 id)가 나머지를 막지 않음
- clear(variant_id) 는 멱등 (두 번 호출해도 에러 없음)
- load(variant_id) 는 저장 순서 그대로 (seq 컬럼)
- store 자체를 열 수 없을 때만 PersistenceError

구현:
- InMemoryTradeStore : 테스트/단발 실행용
- SqlTradeStore      : DB-API 2.0 connection_factory (MSSQL via pyodbc, sqlite3 둘 다 '?' placeholder)
"""
import logging
import math
from contextlib import closing
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from fx_governor.backtest.summary import TradeRecord
from fx_governor.errors import PersistenceError

logger = logging.getLogger(__name__)

NUMERIC_FIELDS = (
    'entry_price', 'exit_price', 'pips', 'composite_score',
    'spread_pips', 'slippage_pips', 'mfe_pips', 'mae_pips',
)

COLUMNS = (
    'record_id', 'variant_id', 'seq', 'pair', 'direction', 'units',
    'entry_price', 'exit_price', 'pips', 'opened_at', 'closed_at',
    'triggered_gates', 'composite_score', 'session', 'regime',
    'spread_pips', 'slippage_pips', 'mfe_pips', 'mae_pips', 'exit_reason',
)


@dataclass(frozen=True)
class PersistOutcome:
    inserted: int
    errors: int


def invalid_reason(record: TradeRecord) -> Optional[str]:
    """저장 불가 사유 (None = OK)"""
    if not record.record_id:
        return "empty record_id"
    for name in NUMERIC_FIELDS:
        value = getattr(record, name)
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            return f"non-finite {name}: {value!r}"
    return None


class TradeStore:
    """Interface"""

    def persist(self, records: Iterable[TradeRecord]) -> PersistOutcome:
        raise NotImplementedError

    def clear(self, variant_id: Optional[str] = None) -> int:
        raise NotImplementedError

    def load(self, variant_id: str) -> List[TradeRecord]:
        raise NotImplementedError


class InMemoryTradeStore(TradeStore):
    def __init__(self):
        self._rows: Dict[str, List[TradeRecord]] = {}
        self._ids = set()

    def persist(self, records: Iterable[TradeRecord]) -> PersistOutcome:
        inserted = errors = 0
        for record in records:
            reason = invalid_reason(record)
            if reason is None and record.record_id in self._ids:
                reason = f"duplicate record_id {record.record_id}"
            if reason is not None:
                logger.warning(f"[TradeStore] skip {record.record_id}: {reason}")
                errors += 1
                continue
            self._rows.setdefault(record.variant_id, []).append(record)
            self._ids.add(record.record_id)
            inserted += 1
        return PersistOutcome(inserted, errors)

    def clear(self, variant_id: Optional[str] = None) -> int:
        if variant_id is None:
            removed = sum(len(rs) for rs in self._rows.values())
            self._rows.clear()
            self._ids.clear()
            return removed
        rows = self._rows.pop(variant_id, [])
        for r in rows:
            self._ids.discard(r.record_id)
        return len(rows)

    def load(self, variant_id: str) -> List[TradeRecord]:
        return list(self._rows.get(variant_id, []))


class SqlTradeStore(TradeStore):
    """DB-API store. dialect: 'mssql' | 'sqlite'"""

    TABLE_NAME = "backtest_trades"

    def __init__(self, connection_factory: Optional[Callable] = None, dialect: str = 'mssql'):
        if dialect not in ('mssql', 'sqlite'):
            raise ValueError(f"Unknown dialect: {dialect!r}")
        if connection_factory is None:
            from fx_governor.db.connection import get_connection
            connection_factory = get_connection
        self.connection_factory = connection_factory
        self.dialect = dialect
        self._schema_ready = False

    def _connect(self):
        try:
            return self.connection_factory()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"cannot open trade store: {e}") from e

    def _ddl(self) -> str:
        if self.dialect == 'sqlite':
            return f"""
            CREATE TABLE IF NOT EXISTS {self.TABLE_NAME} (
                record_id TEXT PRIMARY KEY,
                variant_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                pair TEXT NOT NULL,
                direction TEXT NOT NULL,
                units INTEGER NOT NULL,
                entry_price REAL NOT NULL,
                exit_price REAL NOT NULL,
                pips REAL NOT NULL,
                opened_at TEXT NOT NULL,
                closed_at TEXT NOT NULL,
                triggered_gates TEXT,
                composite_score REAL,
                session TEXT,
                regime TEXT,
                spread_pips REAL,
                slippage_pips REAL,
                mfe_pips REAL,
                mae_pips REAL,
                exit_reason TEXT
            )
            """
        return f"""
        IF NOT EXISTS (SELECT * FROM sysobjects WHERE name='{self.TABLE_NAME}' AND xtype='U')
        CREATE TABLE {self.TABLE_NAME} (
            record_id NVARCHAR(100) NOT NULL PRIMARY KEY,
            variant_id NVARCHAR(100) NOT NULL,
            seq INT NOT NULL,
            pair NVARCHAR(10) NOT NULL,
            direction NVARCHAR(5) NOT NULL,
            units INT NOT NULL,
            entry_price FLOAT NOT NULL,
            exit_price FLOAT NOT NULL,
            pips FLOAT NOT NULL,
            opened_at NVARCHAR(32) NOT NULL,
            closed_at NVARCHAR(32) NOT NULL,
            triggered_gates NVARCHAR(2000),
            composite_score FLOAT,
            session NVARCHAR(20),
            regime NVARCHAR(20),
            spread_pips FLOAT,
            slippage_pips FLOAT,
            mfe_pips FLOAT,
            mae_pips FLOAT,
            exit_reason NVARCHAR(10),
            created_at DATETIME DEFAULT GETDATE()
        )
        """

    def ensure_schema(self) -> None:
        """테이블 생성 (없으면)"""
        if self._schema_ready:
            return
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(self._ddl())
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise PersistenceError(f"schema creation failed: {e}") from e
            finally:
                cursor.close()
        self._schema_ready = True

    def _next_seq(self, cursor, variant_id: str) -> int:
        cursor.execute(
            f"SELECT COALESCE(MAX(seq), -1) FROM {self.TABLE_NAME} WHERE variant_id = ?",
            (variant_id,),
        )
        row = cursor.fetchone()
        return int(row[0]) + 1

    def persist(self, records: Iterable[TradeRecord]) -> PersistOutcome:
        self.ensure_schema()
        placeholders = ", ".join("?" for _ in COLUMNS)
        insert = f"INSERT INTO {self.TABLE_NAME} ({', '.join(COLUMNS)}) VALUES ({placeholders})"

        inserted = errors = 0
        seqs: Dict[str, int] = {}
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            try:
                for record in records:
                    reason = invalid_reason(record)
                    if reason is not None:
                        logger.warning(f"[TradeStore] skip {record.record_id}: {reason}")
                        errors += 1
                        continue

                    try:
                        if record.variant_id not in seqs:
                            seqs[record.variant_id] = self._next_seq(cursor, record.variant_id)
                        row = record.to_row()
                        row['seq'] = seqs[record.variant_id]
                        cursor.execute(insert, tuple(row[c] for c in COLUMNS))
                        conn.commit()
                    except Exception as e:
                        conn.rollback()
                        logger.warning(f"[TradeStore] insert failed {record.record_id}: {e}")
                        errors += 1
                        continue
                    seqs[record.variant_id] += 1
                    inserted += 1
            finally:
                cursor.close()

        logger.info(f"[TradeStore] persisted inserted={inserted} errors={errors}")
        return PersistOutcome(inserted, errors)

    def clear(self, variant_id: Optional[str] = None) -> int:
        self.ensure_schema()
        if variant_id is None:
            query, params = f"DELETE FROM {self.TABLE_NAME}", ()
        else:
            query, params = f"DELETE FROM {self.TABLE_NAME} WHERE variant_id = ?", (variant_id,)
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)
                removed = max(cursor.rowcount, 0)
                conn.commit()
            except Exception as e:
                conn.rollback()
                raise PersistenceError(f"clear failed: {e}") from e
            finally:
                cursor.close()
        return removed

    def load(self, variant_id: str) -> List[TradeRecord]:
        self.ensure_schema()
        query = (
            f"SELECT {', '.join(COLUMNS)} FROM {self.TABLE_NAME} "
            f"WHERE variant_id = ? ORDER BY seq"
        )
        with closing(self._connect()) as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, (variant_id,))
                columns = [c[0] for c in cursor.description]
                rows = cursor.fetchall()
            except Exception as e:
                raise PersistenceError(f"load failed: {e}") from e
            finally:
                cursor.close()
        return [TradeRecord.from_row(dict(zip(columns, row))) for row in rows]

    def count(self, variant_id: str) -> int:
        return len(self.load(variant_id))
