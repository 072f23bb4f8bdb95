"""
Trade Records & Backtest Summary
================================

TradeRecord: 백테스트 출력 1건 (write-once, frozen)
summarize(): TradeRecord 시퀀스 -> BacktestSummary (순수 함수)

정의:
- win           <=> pips > 0
- win_rate      = wins / total
- net_pips      = Σ pips
- profit_factor = Σ(+pips) / |Σ(-pips)|   (손실 0 & 이익 > 0 -> inf, 빈 시퀀스 -> 0)
- sharpe        = mean(pips) / stdev(pips, ddof=1)   (2건 미만 또는 stdev 0 -> 0)

레코드 순서대로 합산 -> 저장 후 다시 읽어도 동일한 summary.
"""
import json
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class TradeRecord:
    record_id: str
    variant_id: str
    pair: str
    direction: str
    units: int
    entry_price: float
    exit_price: float
    pips: float
    opened_at: datetime
    closed_at: datetime
    triggered_gates: Tuple[str, ...] = ()
    composite_score: float = 0.0
    session: str = ''
    regime: str = ''
    spread_pips: float = 0.0
    slippage_pips: float = 0.0
    mfe_pips: float = 0.0
    mae_pips: float = 0.0
    exit_reason: str = ''       # tp | sl | time

    @property
    def won(self) -> bool:
        return self.pips > 0

    @property
    def duration_minutes(self) -> float:
        return (self.closed_at - self.opened_at).total_seconds() / 60

    def to_row(self) -> Dict[str, Any]:
        """Flat row for persistence (gates -> JSON, datetimes -> ISO)"""
        return {
            'record_id': self.record_id,
            'variant_id': self.variant_id,
            'pair': self.pair,
            'direction': self.direction,
            'units': self.units,
            'entry_price': self.entry_price,
            'exit_price': self.exit_price,
            'pips': self.pips,
            'opened_at': self.opened_at.isoformat(),
            'closed_at': self.closed_at.isoformat(),
            'triggered_gates': json.dumps(list(self.triggered_gates)),
            'composite_score': self.composite_score,
            'session': self.session,
            'regime': self.regime,
            'spread_pips': self.spread_pips,
            'slippage_pips': self.slippage_pips,
            'mfe_pips': self.mfe_pips,
            'mae_pips': self.mae_pips,
            'exit_reason': self.exit_reason,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'TradeRecord':
        def _ts(value):
            return value if isinstance(value, datetime) else datetime.fromisoformat(str(value))

        gates = row.get('triggered_gates') or '[]'
        if isinstance(gates, str):
            gates = json.loads(gates)
        return cls(
            record_id=str(row['record_id']),
            variant_id=str(row['variant_id']),
            pair=str(row['pair']),
            direction=str(row['direction']),
            units=int(row['units']),
            entry_price=float(row['entry_price']),
            exit_price=float(row['exit_price']),
            pips=float(row['pips']),
            opened_at=_ts(row['opened_at']),
            closed_at=_ts(row['closed_at']),
            triggered_gates=tuple(gates),
            composite_score=float(row.get('composite_score') or 0.0),
            session=row.get('session') or '',
            regime=row.get('regime') or '',
            spread_pips=float(row.get('spread_pips') or 0.0),
            slippage_pips=float(row.get('slippage_pips') or 0.0),
            mfe_pips=float(row.get('mfe_pips') or 0.0),
            mae_pips=float(row.get('mae_pips') or 0.0),
            exit_reason=row.get('exit_reason') or '',
        )


@dataclass(frozen=True)
class BacktestSummary:
    trades_count: int = 0
    win_rate: float = 0.0
    net_pips: float = 0.0
    profit_factor: float = 0.0
    sharpe: float = 0.0
    # extras
    expectancy_pips: float = 0.0
    max_drawdown_pips: float = 0.0
    longest_win_streak: int = 0
    longest_loss_streak: int = 0
    avg_duration_minutes: float = 0.0
    by_pair: Dict[str, Dict[str, float]] = field(default_factory=dict)
    by_session: Dict[str, Dict[str, float]] = field(default_factory=dict)
    by_regime: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def headline(self) -> Dict[str, float]:
        return {
            'trades_count': self.trades_count,
            'win_rate': self.win_rate,
            'net_pips': self.net_pips,
            'profit_factor': self.profit_factor,
            'sharpe': self.sharpe,
        }


def profit_factor(pips: Sequence[float]) -> float:
    gross_profit = sum(p for p in pips if p > 0)
    gross_loss = -sum(p for p in pips if p < 0)
    if gross_loss == 0:
        return math.inf if gross_profit > 0 else 0.0
    return gross_profit / gross_loss


def sharpe_ratio(pips: Sequence[float]) -> float:
    if len(pips) < 2:
        return 0.0
    arr = np.asarray(pips, dtype=float)
    std = float(arr.std(ddof=1))
    if std == 0 or not math.isfinite(std):
        return 0.0
    return float(arr.mean()) / std


def max_drawdown(pips: Sequence[float]) -> float:
    equity = peak = worst = 0.0
    for p in pips:
        equity += p
        peak = max(peak, equity)
        worst = max(worst, peak - equity)
    return worst


def _streaks(pips: Sequence[float]) -> Tuple[int, int]:
    best_win = best_loss = cur_win = cur_loss = 0
    for p in pips:
        if p > 0:
            cur_win, cur_loss = cur_win + 1, 0
        else:
            cur_win, cur_loss = 0, cur_loss + 1
        best_win = max(best_win, cur_win)
        best_loss = max(best_loss, cur_loss)
    return best_win, best_loss


def _group(records: Sequence[TradeRecord], key) -> Dict[str, Dict[str, float]]:
    groups: Dict[str, List[TradeRecord]] = {}
    for r in records:
        groups.setdefault(key(r), []).append(r)
    return {
        k: {
            'trades': len(rs),
            'wins': sum(1 for r in rs if r.won),
            'win_rate': sum(1 for r in rs if r.won) / len(rs),
            'net_pips': sum(r.pips for r in rs),
        }
        for k, rs in sorted(groups.items())
    }


def summarize(records: Sequence[TradeRecord]) -> BacktestSummary:
    """TradeRecord 시퀀스 -> BacktestSummary (빈 시퀀스 -> 전부 0)"""
    if not records:
        return BacktestSummary()

    pips = [r.pips for r in records]
    n = len(pips)
    wins = sum(1 for p in pips if p > 0)
    net = sum(pips)
    win_streak, loss_streak = _streaks(pips)

    return BacktestSummary(
        trades_count=n,
        win_rate=wins / n,
        net_pips=net,
        profit_factor=profit_factor(pips),
        sharpe=sharpe_ratio(pips),
        expectancy_pips=net / n,
        max_drawdown_pips=max_drawdown(pips),
        longest_win_streak=win_streak,
        longest_loss_streak=loss_streak,
        avg_duration_minutes=sum(r.duration_minutes for r in records) / n,
        by_pair=_group(records, lambda r: r.pair),
        by_session=_group(records, lambda r: r.session or 'unknown'),
        by_regime=_group(records, lambda r: r.regime or 'unknown'),
    )


def format_report(summary: BacktestSummary, title: str = "Backtest Summary") -> str:
    pf = "∞" if math.isinf(summary.profit_factor) else f"{summary.profit_factor:.2f}"
    lines = [
        "=" * 50,
        title,
        "=" * 50,
        f"Trades:          {summary.trades_count}",
        f"Win rate:        {summary.win_rate * 100:.1f}%",
        f"Net pips:        {summary.net_pips:+.1f}",
        f"Profit factor:   {pf}",
        f"Sharpe:          {summary.sharpe:.3f}",
        f"Expectancy:      {summary.expectancy_pips:+.2f} pips/trade",
        f"Max drawdown:    {summary.max_drawdown_pips:.1f} pips",
        f"Streaks (W/L):   {summary.longest_win_streak}/{summary.longest_loss_streak}",
        f"Avg duration:    {summary.avg_duration_minutes:.0f} min",
    ]
    if summary.by_pair:
        lines.append("-" * 50)
        lines.append(f"{'Pair':<10}{'Trades':>8}{'WR':>8}{'Net':>10}")
        for pair, s in summary.by_pair.items():
            lines.append(f"{pair:<10}{s['trades']:>8}{s['win_rate'] * 100:>7.1f}%{s['net_pips']:>+10.1f}")
    if summary.by_regime:
        lines.append("-" * 50)
        lines.append(f"{'Regime':<12}{'Trades':>6}{'WR':>8}{'Net':>10}")
        for regime, s in summary.by_regime.items():
            lines.append(f"{regime:<12}{s['trades']:>6}{s['win_rate'] * 100:>7.1f}%{s['net_pips']:>+10.1f}")
    lines.append("=" * 50)
    return "\n".join(lines)


def print_report(summary: BacktestSummary, title: str = "Backtest Summary") -> None:
    print(format_report(summary, title))
