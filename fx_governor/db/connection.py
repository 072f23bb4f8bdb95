"""
DB Connection
=============

SqlTradeStore 의 기본 connection_factory (SQL Server, pyodbc).

환경변수 (프로젝트 루트 .env 도 읽음, 이미 설정된 값이 우선):
    MSSQL_SERVER    host,port (기본 localhost,1433)
    MSSQL_DATABASE  기본 fx_governor
    MSSQL_DRIVER    기본 ODBC Driver 17 for SQL Server
    MSSQL_USER / MSSQL_PASSWORD  필수
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from dotenv import load_dotenv

from fx_governor.errors import PersistenceError

logger = logging.getLogger(__name__)

ENV_FILE = Path(__file__).parent.parent.parent / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE)


@dataclass(frozen=True)
class MssqlSettings:
    server: str
    database: str
    driver: str
    user: Optional[str]
    password: Optional[str]

    @classmethod
    def from_env(cls) -> 'MssqlSettings':
        return cls(
            server=os.getenv("MSSQL_SERVER", "localhost,1433"),
            database=os.getenv("MSSQL_DATABASE", "fx_governor"),
            driver=os.getenv("MSSQL_DRIVER", "ODBC Driver 17 for SQL Server"),
            user=os.getenv("MSSQL_USER"),
            password=os.getenv("MSSQL_PASSWORD"),
        )

    def odbc(self) -> str:
        if not (self.user and self.password):
            raise PersistenceError("MSSQL_USER / MSSQL_PASSWORD not set")
        parts = {
            "DRIVER": f"{{{self.driver}}}",
            "SERVER": self.server,
            "DATABASE": self.database,
            "UID": self.user,
            "PWD": self.password,
            "TrustServerCertificate": "yes",
        }
        return "".join(f"{k}={v};" for k, v in parts.items())


def connection_string(settings: Optional[MssqlSettings] = None) -> str:
    return (settings or MssqlSettings.from_env()).odbc()


def get_connection():
    """pyodbc 연결 (pyodbc 는 mssql extra, 호출 시점에만 import)"""
    import pyodbc

    odbc = connection_string()
    try:
        return pyodbc.connect(odbc)
    except pyodbc.Error as e:
        raise PersistenceError(f"SQL Server connection failed: {e}") from e


@contextmanager
def get_cursor(connection_factory: Callable = get_connection):
    """블록 성공 -> commit, 예외 -> rollback 후 재발생. 연결은 항상 닫힘"""
    conn = connection_factory()
    try:
        cur = conn.cursor()
        try:
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cur.close()
    finally:
        conn.close()


def check_connection(connection_factory: Callable = get_connection) -> bool:
    """SELECT 1 성공 여부 (실패는 로그만)"""
    try:
        with get_cursor(connection_factory) as cur:
            cur.execute("SELECT 1")
            cur.fetchone()
    except Exception as e:
        logger.error(f"[DB] connection check failed: {e}")
        return False
    return True
