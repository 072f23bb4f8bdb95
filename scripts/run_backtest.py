#!/usr/bin/env python3
"""
FX Governor 백테스트 실행 스크립트

사용법:
    python scripts/run_backtest.py                              # 8 majors, 최근 90일
    python scripts/run_backtest.py --pairs EUR_USD,GBP_USD --days 30 --seed 7
    python scripts/run_backtest.py --start 2024-01-01 --end 2024-03-01 --sqlite trades.db
    python scripts/run_backtest.py --mssql --variant strict     # MSSQL_* 환경변수 필요
"""
import argparse
import logging
import sqlite3
import sys
from dataclasses import replace
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT))

from fx_governor.backtest import (
    BacktestSimulator,
    default_backtest_config,
    print_report,
)
from fx_governor.config import load_settings
from fx_governor.db import SqlTradeStore
from fx_governor.db.connection import check_connection
from fx_governor.errors import GovernanceError
from fx_governor.market.candles import to_utc_timestamp


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="FX Governor backtest")
    parser.add_argument("--config", help="override YAML (default.yaml 위에 merge)")
    parser.add_argument("--pairs", help="comma separated, e.g. EUR_USD,GBP_USD")
    parser.add_argument("--start", help="YYYY-MM-DD (UTC)")
    parser.add_argument("--end", help="YYYY-MM-DD (UTC), default: now")
    parser.add_argument("--days", type=int, help="window length when --start omitted")
    parser.add_argument("--seed", type=int)
    parser.add_argument("--variant", help="variant_id")
    parser.add_argument("--shadow", action="store_true", help="split admitted trades into shadow legs")
    parser.add_argument("--sqlite", help="persist TradeRecords to this sqlite file")
    parser.add_argument("--mssql", action="store_true", help="persist TradeRecords to MSSQL")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = load_settings(args.config)
    end = to_utc_timestamp(args.end).to_pydatetime() if args.end else None
    config = default_backtest_config(now=end, settings=settings)

    if args.pairs:
        config.pairs = [p.strip() for p in args.pairs.split(",") if p.strip()]
    if args.days:
        config.start_date = config.end_date - timedelta(days=args.days)
    if args.start:
        config.start_date = to_utc_timestamp(args.start).to_pydatetime()
    if args.seed is not None:
        config.seed = args.seed
        config.friction = replace(config.fill_model, seed=args.seed)
    if args.variant:
        config.variant_id = args.variant
    if args.shadow:
        config.split_shadow_orders = True

    print("=" * 50)
    print(f"[기간] {config.start_date} -> {config.end_date}")
    print(f"[Pairs] {', '.join(config.pairs)}")
    print(f"[Variant] {config.variant_id}  seed={config.seed}")
    print("=" * 50)

    def on_progress(p):
        print(f"  {p.percent:5.1f}%  decisions={p.decisions}  trades={p.trades}", flush=True)

    try:
        run = BacktestSimulator.from_settings(settings).run(config, progress=on_progress)
    except GovernanceError as e:
        print(f"백테스트 실패: {e}")
        return 1

    print_report(run.summary, title=f"Backtest: {config.variant_id}")
    print(f"Decisions: {run.decisions}  Admitted: {run.admitted}  Dynamic gates: {run.gates_created}")
    if run.shadow_plans:
        legs = sum(len(p.legs) for p in run.shadow_plans)
        print(f"Shadow plans: {len(run.shadow_plans)} ({legs} legs)")

    store = None
    if args.sqlite:
        store = SqlTradeStore(lambda: sqlite3.connect(args.sqlite), dialect="sqlite")
    elif args.mssql:
        if not check_connection():
            print("MSSQL 연결 실패 (MSSQL_* 환경변수 확인)")
            return 1
        store = SqlTradeStore()
    if store is not None:
        try:
            store.clear(config.variant_id)
            outcome = store.persist(run.trades)
        except GovernanceError as e:
            print(f"저장 실패: {e}")
            return 1
        print(f"[저장] inserted={outcome.inserted} errors={outcome.errors}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
