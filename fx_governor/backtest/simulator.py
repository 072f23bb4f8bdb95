"""
Backtest Simulator
==================

DecisionEngine 을 과거 데이터 위에서 결정적으로 재생.

핵심 원칙:
- 모든 pair 의 bar 를 하나의 시간순 timeline 으로 병합, 순차 처리
- 결정 시각 = bar close (now = as_of = close), 마감된 캔들만 사용
- 체결 = 다음 bar open + spread/slippage, SL 먼저 확인 후 TP, 최대 보유 시 time exit
- pair 당 동시 포지션 1개, 청산 후 cooldown
- 종료된 거래 결과는 clock 이 close 시각을 지난 뒤에만 이력/합성 정책에 공개 (no look-ahead)
- 실행마다 새 registry -> 같은 config + seed = bit-identical TradeRecord 시퀀스
- progress 콜백 + 협조적 취소 (반복 사이에서 확인, 부분 결과 반환)

Usage:
```python
from fx_governor.backtest import BacktestSimulator, default_backtest_config

config = default_backtest_config(now=datetime(2024, 6, 1))
run = BacktestSimulator().run(config, progress=lambda p: print(f"{p.percent:.0f}%"))
print(run.summary.win_rate, run.summary.net_pips)
```
"""
import hashlib
import heapq
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from fx_governor.analysis.multi_tf import AnalyzerConfig, MultiTimeframeAnalyzer
from fx_governor.analysis.readiness import ReadinessChecker
from fx_governor.backtest.friction import FrictionModel
from fx_governor.backtest.summary import BacktestSummary, TradeRecord, summarize
from fx_governor.errors import BacktestConfigError, GovernanceError
from fx_governor.execution.shadow_splitter import ShadowOrderSplitter, ShadowSplitPlan
from fx_governor.governance.context import classify_volatility_phase
from fx_governor.governance.engine import DecisionEngine
from fx_governor.governance.gates import GateEvaluator
from fx_governor.governance.registry import (
    DynamicGateRegistry,
    FailurePatternSynthesizer,
    SynthesisPolicy,
)
from fx_governor.governance.scoring import CompositeScorer, ScoringWeights
from fx_governor.governance.types import TradeOutcome, TradeProposal
from fx_governor.market.candles import CandleSource, SyntheticCandleSource, to_utc_timestamp
from fx_governor.market.tickers import MAJOR_PAIRS, Instrument, TickerResolver
from fx_governor.utils.timeframe import Duration, TimeframeSpec, get_higher_timeframe

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 50           # sequencing 20 + overtrading 여유
SIGNAL_MIN_EFFICIENCY = 0.25  # 1h body / range 미만 -> neutral


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class BacktestConfig:
    """백테스트 설정"""
    start_date: datetime
    end_date: datetime
    pairs: List[str] = field(default_factory=lambda: list(MAJOR_PAIRS))
    variant_id: str = 'baseline'
    seed: int = 42
    friction: Optional[FrictionModel] = None   # None -> FrictionModel(seed=seed)

    # Trade management (pips / 15m bars)
    tp_pips: float = 15.0
    sl_pips: float = 7.0
    max_duration_bars: int = 48   # 48 × 15m = 12h
    cooldown_bars: int = 2
    units: int = 1000

    primary_timeframe: str = '15m'
    signal_timeframe: str = '1h'  # 방향 = 마지막 마감 1h 캔들 (없으면 4h)
    timeframes: Tuple[str, ...] = ('15m', '1h', '4h')
    warmup: str = '10d'           # 합성 데이터: start 이전 분석용 히스토리
    split_shadow_orders: bool = False
    progress_every: int = 500

    @property
    def fill_model(self) -> FrictionModel:
        """명시된 friction, 없으면 config seed 로 생성"""
        return self.friction if self.friction is not None else FrictionModel(seed=self.seed)

    def validate(self, resolver: Optional[TickerResolver] = None) -> 'BacktestConfig':
        """
        Raises:
            BacktestConfigError: 시뮬레이션 시작 전 즉시
        """
        resolver = resolver or TickerResolver()
        if not self.pairs:
            raise BacktestConfigError("pairs must not be empty")
        try:
            start, end = to_utc_timestamp(self.start_date), to_utc_timestamp(self.end_date)
        except (TypeError, ValueError) as e:
            raise BacktestConfigError(f"invalid date: {e}") from e
        if pd.isna(start) or pd.isna(end):
            raise BacktestConfigError("start_date and end_date are required")
        if start >= end:
            raise BacktestConfigError(f"start_date {self.start_date} must be before end_date {self.end_date}")

        unknown = []
        for pair in self.pairs:
            try:
                if resolver.resolve(pair) is None:
                    unknown.append(pair)
            except GovernanceError:
                unknown.append(pair)
        if unknown:
            raise BacktestConfigError(f"unresolvable pairs: {unknown}")

        if isinstance(self.seed, bool) or not isinstance(self.seed, int) or self.seed < 0:
            raise BacktestConfigError(f"seed must be a non-negative int, got {self.seed!r}")
        if self.tp_pips <= 0 or self.sl_pips <= 0:
            raise BacktestConfigError("tp_pips and sl_pips must be > 0")
        if self.max_duration_bars < 1 or self.cooldown_bars < 0:
            raise BacktestConfigError("max_duration_bars must be >= 1 and cooldown_bars >= 0")
        if isinstance(self.units, bool) or not isinstance(self.units, int) or self.units <= 0:
            raise BacktestConfigError(f"units must be a positive int, got {self.units!r}")
        try:
            for tf in (self.primary_timeframe, self.signal_timeframe, *self.timeframes):
                TimeframeSpec.from_string(tf)
            Duration.parse(self.warmup)
        except ValueError as e:
            raise BacktestConfigError(str(e)) from e
        return self


def default_backtest_config(now: Optional[datetime] = None, settings=None) -> BacktestConfig:
    """8 majors, trailing 90 days (settings.backtest 가 있으면 그 값)"""
    defaults = settings.backtest if settings is not None else None
    window_days = defaults.window_days if defaults else 90
    end = to_utc_timestamp(now if now is not None else datetime.now(timezone.utc)).floor('15min').to_pydatetime()
    config = BacktestConfig(start_date=end - timedelta(days=window_days), end_date=end)
    if defaults:
        config.pairs = list(defaults.pairs)
        config.variant_id = defaults.variant_id
        config.seed = defaults.seed
        config.friction = FrictionModel(defaults.spread_multiplier, defaults.slippage_multiplier, defaults.seed)
        config.tp_pips = defaults.tp_pips
        config.sl_pips = defaults.sl_pips
        config.max_duration_bars = defaults.max_duration_bars
        config.cooldown_bars = defaults.cooldown_bars
        config.units = defaults.units
        config.split_shadow_orders = defaults.split_shadow_orders
        config.primary_timeframe = settings.primary_timeframe
        config.timeframes = tuple(settings.analyzer.timeframes)
    return config


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class BacktestProgress:
    processed: int
    total: int
    decisions: int
    trades: int

    @property
    def percent(self) -> float:
        return 100.0 * self.processed / self.total if self.total else 100.0


@dataclass
class BacktestRun:
    config: BacktestConfig
    trades: List[TradeRecord]
    summary: BacktestSummary
    decisions: int = 0
    admitted: int = 0
    cancelled: bool = False
    gates_created: int = 0
    shadow_plans: List[ShadowSplitPlan] = field(default_factory=list)


@dataclass
class _PairSeries:
    instrument: Instrument
    ts: np.ndarray       # bar open, int64 ns
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    next_allowed: int = 0


def _stable_int(*parts) -> int:
    blob = "|".join(str(p) for p in parts).encode("utf-8")
    return int.from_bytes(hashlib.sha256(blob).digest()[:4], "big")


# =============================================================================
# Simulator
# =============================================================================

class BacktestSimulator:
    """Replays DecisionEngine over a historical window."""

    def __init__(
        self,
        source: Optional[CandleSource] = None,
        analyzer_config: Optional[AnalyzerConfig] = None,
        weights: Optional[ScoringWeights] = None,
        advisory_gates: Iterable[str] = (),
        synthesis_policy: Optional[SynthesisPolicy] = None,
        resolver: Optional[TickerResolver] = None,
    ):
        self.source = source
        self.analyzer_config = analyzer_config
        self.weights = weights
        self.advisory_gates = tuple(advisory_gates)
        self.synthesis_policy = synthesis_policy
        self.resolver = resolver or TickerResolver()

    @classmethod
    def from_settings(cls, settings, source: Optional[CandleSource] = None) -> 'BacktestSimulator':
        return cls(
            source=source,
            analyzer_config=settings.analyzer,
            weights=settings.scoring,
            advisory_gates=settings.advisory_gates,
            synthesis_policy=settings.synthesis,
        )

    def _source_for(self, config: BacktestConfig, start: pd.Timestamp, end: pd.Timestamp) -> CandleSource:
        if self.source is not None:
            return self.source
        warmup = Duration.parse(config.warmup).delta
        return SyntheticCandleSource(
            (start - warmup).to_pydatetime(), end.to_pydatetime(),
            pairs=config.pairs, seed=config.seed, base_timeframe=config.primary_timeframe,
        )

    def _engine(self, source: CandleSource, config: BacktestConfig, registry: DynamicGateRegistry) -> DecisionEngine:
        analyzer = MultiTimeframeAnalyzer(source, self.analyzer_config)
        return DecisionEngine(
            readiness=ReadinessChecker(self.resolver, analyzer),
            registry=registry,
            gate_evaluator=GateEvaluator(advisory=self.advisory_gates),
            scorer=CompositeScorer(self.weights),
            timeframes=config.timeframes,
        )

    def _signal(
        self,
        source: CandleSource,
        series: _PairSeries,
        i: int,
        clock: datetime,
        config: BacktestConfig,
    ) -> Optional[Tuple[str, float]]:
        """
        (direction, confidence) from the last closed signal-TF candle (fallback: next higher TF).

        None = neutral (body / range < 0.25 or no candle yet).
        """
        candle = None
        tf = config.signal_timeframe
        for candidate in (tf, get_higher_timeframe(tf)):
            if candidate is None:
                continue
            df = source.get_candles(series.instrument, candidate, as_of=clock, limit=1)
            if len(df):
                candle = df.iloc[-1]
                break
        if candle is None:
            return None

        rng_range = candle['high'] - candle['low']
        eff = abs(candle['close'] - candle['open']) / rng_range if rng_range > 0 else 0.0
        if eff < SIGNAL_MIN_EFFICIENCY:
            return None

        direction = 'long' if candle['close'] > candle['open'] else 'short'
        bar_direction = 'long' if series.close[i] > series.open[i] else 'short'
        aligned = bar_direction == direction
        u = np.random.default_rng([config.seed, _stable_int(series.instrument.canonical), i]).random()
        confidence = min(0.95, 0.4 + eff * 0.3 + (0.15 if aligned else 0.0) + u * 0.1)
        return direction, float(confidence)

    def _simulate_trade(
        self,
        series: _PairSeries,
        i: int,
        direction: str,
        atr: float,
        atr_avg: float,
        config: BacktestConfig,
        bar_ns: int,
        bar_key: int,
    ) -> Tuple[dict, int]:
        """Fill at bar i+1 open, walk forward. Returns (fields, exit index)."""
        inst = series.instrument
        pip = inst.pip_size
        opened_at = pd.Timestamp(int(series.ts[i + 1])).to_pydatetime()
        fill = config.fill_model.fill_price(
            direction, float(series.open[i + 1]), inst.canonical, opened_at, atr, atr_avg, bar_key
        )
        entry = float(fill.fill_price)
        sign = 1 if direction == 'long' else -1
        tp = entry + sign * config.tp_pips * pip
        sl = entry - sign * config.sl_pips * pip

        last = min(len(series.ts) - 1, i + config.max_duration_bars)
        exit_price, exit_idx, reason = float(series.close[last]), last, 'time'
        mfe = mae = 0.0
        for j in range(i + 1, last + 1):
            hi, lo = float(series.high[j]), float(series.low[j])
            if direction == 'long':
                mfe = max(mfe, (hi - entry) / pip)
                mae = max(mae, (entry - lo) / pip)
                if lo <= sl:
                    exit_price, exit_idx, reason = sl, j, 'sl'
                    break
                if hi >= tp:
                    exit_price, exit_idx, reason = tp, j, 'tp'
                    break
            else:
                mfe = max(mfe, (entry - lo) / pip)
                mae = max(mae, (hi - entry) / pip)
                if hi >= sl:
                    exit_price, exit_idx, reason = sl, j, 'sl'
                    break
                if lo <= tp:
                    exit_price, exit_idx, reason = tp, j, 'tp'
                    break

        closed_at = pd.Timestamp(int(series.ts[exit_idx]) + bar_ns).to_pydatetime()
        return {
            'entry_price': entry,
            'exit_price': exit_price,
            'pips': sign * (exit_price - entry) / pip,
            'opened_at': opened_at,
            'closed_at': closed_at,
            'session': fill.session,
            'spread_pips': float(fill.spread_pips),
            'slippage_pips': float(fill.slippage_pips),
            'mfe_pips': mfe,
            'mae_pips': mae,
            'exit_reason': reason,
        }, exit_idx

    def run(
        self,
        config: BacktestConfig,
        progress: Optional[Callable[[BacktestProgress], None]] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> BacktestRun:
        config.validate(self.resolver)
        start = to_utc_timestamp(config.start_date)
        end = to_utc_timestamp(config.end_date)
        tf_spec = TimeframeSpec.from_string(config.primary_timeframe)
        bar_ns = int(pd.Timedelta(tf_spec.delta).value)  # 항상 ns

        source = self._source_for(config, start, end)
        registry = DynamicGateRegistry()
        synthesizer = FailurePatternSynthesizer(registry, self.synthesis_policy)
        engine = self._engine(source, config, registry)
        splitter = ShadowOrderSplitter() if config.split_shadow_orders else None

        # ---- per-pair arrays + merged timeline ----
        series: Dict[str, _PairSeries] = {}
        timeline: List[Tuple[int, int, int]] = []   # (close ns, pair order, bar idx)
        for order, pair in enumerate(config.pairs):
            inst = self.resolver.resolve(pair)
            df = source.get_candles(inst, tf_spec.name, as_of=end.to_pydatetime())
            s = _PairSeries(
                instrument=inst,
                ts=df.index.as_unit('ns').asi8.copy(),  # pandas 3 기본 unit = us
                open=df['open'].to_numpy(dtype=float),
                high=df['high'].to_numpy(dtype=float),
                low=df['low'].to_numpy(dtype=float),
                close=df['close'].to_numpy(dtype=float),
            )
            series[inst.canonical] = s
            start_idx = int(np.searchsorted(s.ts, start.value, side='left'))
            closes = s.ts + bar_ns
            for i in range(start_idx, len(s.ts) - 1):
                timeline.append((int(closes[i]), order, i))
        timeline.sort()
        ordered_pairs = [self.resolver.resolve(p).canonical for p in config.pairs]

        logger.info(
            f"[Backtest] {config.variant_id}: {len(config.pairs)} pairs, "
            f"{start} -> {end}, {len(timeline)} bars, seed={config.seed}"
        )

        trades: List[TradeRecord] = []
        plans: List[ShadowSplitPlan] = []
        pending: List[Tuple[datetime, int, TradeRecord]] = []
        history: deque = deque(maxlen=HISTORY_WINDOW)
        decisions = admitted = 0
        cancelled = False
        total = len(timeline)
        every = max(1, config.progress_every)

        def report(processed: int) -> None:
            if progress is not None:
                progress(BacktestProgress(processed, total, decisions, len(trades)))

        processed = 0
        for close_ns, order, i in timeline:
            if should_cancel is not None and should_cancel():
                cancelled = True
                logger.info(f"[Backtest] cancelled at {processed}/{total}")
                break
            if processed and processed % every == 0:
                report(processed)
            processed += 1

            clock = pd.Timestamp(close_ns).to_pydatetime()

            # 마감된 거래만 공개
            while pending and pending[0][0] <= clock:
                closed_at, _, record = heapq.heappop(pending)
                outcome = TradeOutcome(record.pair, record.pips, closed_at)
                history.append(outcome)
                synthesizer.observe(outcome, now=closed_at)

            s = series[ordered_pairs[order]]
            if i < s.next_allowed:
                continue

            signal = self._signal(source, s, i, clock, config)
            if signal is None:
                continue
            direction, confidence = signal

            proposal = TradeProposal(
                index=decisions,
                pair=s.instrument.canonical,
                direction=direction,
                base_win_probability=confidence,
                base_win_range=(config.tp_pips / 2, config.tp_pips),
                base_loss_range=(-config.sl_pips, -config.sl_pips / 2),
            )
            decision = engine.evaluate_full_decision(
                proposal, config.primary_timeframe, now=clock, as_of=clock, trade_history=history,
            )
            decisions += 1
            if not decision.admitted:
                continue
            admitted += 1

            ctx = decision.context_snapshot
            fields, exit_idx = self._simulate_trade(
                s, i, direction, ctx['atr_value'], ctx['atr_avg'], config, bar_ns,
                bar_key=_stable_int(s.instrument.canonical, i),
            )
            record = TradeRecord(
                record_id=f"bt-{config.variant_id}-{s.instrument.canonical}-{len(trades):05d}",
                variant_id=config.variant_id,
                pair=s.instrument.canonical,
                direction=direction,
                units=config.units,
                triggered_gates=tuple(decision.triggered_gate_ids),
                composite_score=decision.composite_score,
                regime=classify_volatility_phase(ctx['atr_value'], ctx['atr_avg'])[0],
                **fields,
            )
            trades.append(record)
            heapq.heappush(pending, (record.closed_at, len(trades), record))
            s.next_allowed = exit_idx + 1 + config.cooldown_bars

            if splitter is not None:
                plans.append(splitter.split(decision, config.units, signal_id=record.record_id).simulate())

        report(processed)

        summary = summarize(trades)
        logger.info(
            f"[Backtest] {config.variant_id}: decisions={decisions} admitted={admitted} "
            f"trades={summary.trades_count} net={summary.net_pips:+.1f} pips cancelled={cancelled}"
        )
        return BacktestRun(
            config=config,
            trades=trades,
            summary=summary,
            decisions=decisions,
            admitted=admitted,
            cancelled=cancelled,
            gates_created=registry.total_gates_created,
            shadow_plans=plans,
        )
