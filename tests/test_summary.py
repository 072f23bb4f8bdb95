# -*- coding: utf-8 -*-
"""
Backtest Summary Tests
======================

Tests for fx_governor/backtest/summary.py, friction.py
"""
import math
from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from fx_governor.backtest import FrictionModel, TradeRecord, format_report, summarize


def record(n: int, pips: float, pair: str = "EUR_USD", session: str = "london-open") -> TradeRecord:
    opened = datetime(2024, 1, 1, 8, 0) + timedelta(hours=n)
    return TradeRecord(
        record_id=f"r-{n}",
        variant_id="v1",
        pair=pair,
        direction="long",
        units=1000,
        entry_price=1.1,
        exit_price=1.1 + pips * 0.0001,
        pips=pips,
        opened_at=opened,
        closed_at=opened + timedelta(minutes=45),
        session=session,
    )


class TestSummarize:
    """headline metrics"""

    def test_empty_is_all_zero(self):
        s = summarize([])
        assert (s.trades_count, s.win_rate, s.net_pips, s.profit_factor, s.sharpe) == (0, 0.0, 0.0, 0.0, 0.0)

    def test_basic_metrics(self):
        s = summarize([record(0, 15), record(1, -7), record(2, 15), record(3, -7)])
        assert s.trades_count == 4
        assert s.win_rate == 0.5
        assert s.net_pips == pytest.approx(16)
        assert s.profit_factor == pytest.approx(30 / 14)
        assert s.expectancy_pips == pytest.approx(4)
        assert s.avg_duration_minutes == pytest.approx(45)

    def test_sharpe(self):
        s = summarize([record(0, 10), record(1, -2), record(2, 4)])
        # mean 4, stdev(ddof=1) 6
        assert s.sharpe == pytest.approx(4 / 6)

    def test_no_losses_infinite_profit_factor(self):
        s = summarize([record(0, 5), record(1, 3)])
        assert math.isinf(s.profit_factor)
        assert "∞" in format_report(s)

    def test_single_trade_sharpe_zero(self):
        assert summarize([record(0, 5)]).sharpe == 0.0

    def test_zero_pips_is_loss(self):
        s = summarize([record(0, 0.0)])
        assert s.win_rate == 0.0
        assert s.profit_factor == 0.0

    def test_drawdown_and_streaks(self):
        s = summarize([record(i, p) for i, p in enumerate([5, -3, -4, -2, 10, 6])])
        assert s.max_drawdown_pips == pytest.approx(9)
        assert s.longest_loss_streak == 3
        assert s.longest_win_streak == 2

    def test_breakdowns(self):
        s = summarize([
            record(0, 5, pair="EUR_USD", session="asian"),
            record(1, -3, pair="GBP_USD", session="asian"),
            record(2, 4, pair="EUR_USD", session="ny-overlap"),
        ])
        assert s.by_pair["EUR_USD"]["trades"] == 2
        assert s.by_pair["GBP_USD"]["win_rate"] == 0.0
        assert s.by_session["asian"]["net_pips"] == pytest.approx(2)

    def test_regime_breakdown(self):
        """regime 없음 -> 'unknown'"""
        s = summarize([
            replace(record(0, 5), regime="expansion"),
            replace(record(1, -3), regime="expansion"),
            replace(record(2, 4), regime="compression"),
            record(3, -2),
        ])
        assert list(s.by_regime) == ["compression", "expansion", "unknown"]
        assert s.by_regime["expansion"]["trades"] == 2
        assert s.by_regime["expansion"]["win_rate"] == 0.5
        assert s.by_regime["unknown"]["net_pips"] == pytest.approx(-2)
        assert "expansion" in format_report(s)

    def test_row_roundtrip(self):
        r = TradeRecord(**{**record(0, 5).__dict__, "triggered_gates": ("G4_SPREAD_INSTABILITY",)})
        assert TradeRecord.from_row(r.to_row()) == r


class TestFrictionModel:
    """spread + slippage 체결가"""

    def test_long_pays_up_short_pays_down(self):
        model = FrictionModel(seed=1)
        ts = datetime(2024, 1, 1, 9, 0)
        long_fill = model.fill_price("long", 1.1, "EUR_USD", ts, 0.0004, 0.0004, bar_key=10)
        short_fill = model.fill_price("short", 1.1, "EUR_USD", ts, 0.0004, 0.0004, bar_key=10)
        assert long_fill.fill_price > 1.1 > short_fill.fill_price
        assert long_fill.session == "london-open"

    def test_deterministic_per_bar(self):
        model = FrictionModel(seed=3)
        ts = datetime(2024, 1, 1, 22, 0)
        a = model.fill_price("long", 150.0, "USD_JPY", ts, 0.1, 0.1, bar_key=5)
        b = model.fill_price("long", 150.0, "USD_JPY", ts, 0.1, 0.1, bar_key=5)
        assert a == b

    def test_rollover_wider_than_london(self):
        model = FrictionModel()
        london = model.fill_price("long", 1.1, "EUR_USD", datetime(2024, 1, 1, 9), 1, 1, bar_key=1)
        rollover = model.fill_price("long", 1.1, "EUR_USD", datetime(2024, 1, 1, 22), 1, 1, bar_key=1)
        assert rollover.spread_pips > london.spread_pips

    def test_multiplier_zero_removes_friction(self):
        model = FrictionModel(spread_multiplier=0, slippage_multiplier=0)
        fill = model.fill_price("long", 1.1, "EUR_USD", datetime(2024, 1, 1, 9), 1, 1, bar_key=1)
        assert fill.fill_price == 1.1
        assert fill.total_friction_pips == 0

    def test_negative_multiplier_rejected(self):
        with pytest.raises(ValueError):
            FrictionModel(spread_multiplier=-1)
