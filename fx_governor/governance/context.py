"""
Governance Context Builder
==========================

분석 결과 + 세션 + 거래 이력 -> GovernanceContext (게이트 입력).

구성 요소:
1. MTF alignment  - HTF 방향 지지(40) + MTF 확인(35) + LTF clean(25)
2. Volatility phase - primary ATR / ATR 평균 비율
3. Session        - UTC hour 기반 세션 + 공격성
4. Microstructure - 예상 spread / slippage, friction ratio, shock proxy
5. Sequencing     - 최근 5건 클러스터, 최근10 vs 이전10 승률 decay
6. Overtrading    - 최근 30분 거래 수 >= 세션 한도

extra_context 로 어떤 필드든 덮어쓸 수 있다 (테스트 / 외부 스냅샷 주입).
"""
import logging
from dataclasses import fields, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from fx_governor.analysis.multi_tf import MultiTimeframeAnalysis, TimeframeAnalysis
from fx_governor.errors import ProposalValidationError
from fx_governor.governance.types import GovernanceContext, TradeOutcome, TradeProposal
from fx_governor.market.sessions import (
    OVERTRADING_LIMITS,
    SESSION_AGGRESSIVENESS,
    SESSION_SPREAD_STABILITY,
    detect_session,
    expected_spread_pips,
    spread_baseline,
)
from fx_governor.market.tickers import Instrument

logger = logging.getLogger(__name__)

CONTEXT_FIELDS = frozenset(f.name for f in fields(GovernanceContext))

OVERTRADING_WINDOW = timedelta(minutes=30)


def classify_volatility_phase(atr_value: float, atr_avg: float) -> Tuple[str, float]:
    """ATR 비율 -> (phase, confidence 0~100)"""
    ratio = atr_value / atr_avg if atr_avg > 0 else 1.0
    if ratio < 0.65:
        return 'compression', 70 + (0.65 - ratio) * 80
    if ratio < 0.95:
        return 'compression', 55 + ratio * 15
    if ratio < 1.3:
        return 'expansion', 60 + (ratio - 0.95) * 80
    if ratio < 1.8:
        return 'ignition', 70 + (ratio - 1.3) * 50
    return 'exhaustion', 65 + min((ratio - 1.8) * 30, 25)


def estimate_spread_stability(session: str, phase: str) -> float:
    rank = SESSION_SPREAD_STABILITY.get(session, 50)
    if phase == 'exhaustion':
        rank -= 10
    return float(max(0, min(100, rank)))


def estimate_liquidity_shock(spread_stability: float, phase: str, session: str) -> float:
    """Shock proxy 0~100: 불안정한 스프레드 + 소진/압축 국면 + 얇은 세션"""
    shock = 100 - spread_stability
    shock += {'exhaustion': 15, 'compression': 5}.get(phase, 0)
    shock += {'late-ny': 10, 'asian': 5, 'rollover': 15}.get(session, 0)
    return float(max(0, min(100, shock)))


def compute_mtf_alignment(
    analysis: Optional[MultiTimeframeAnalysis],
    direction: str,
) -> Tuple[float, bool, bool, bool]:
    """
    (score, htf_supports, mtf_confirms, ltf_clean)

    HTF = 가장 긴 TF, MTF = 가운데, LTF = 가장 짧은 TF.
    """
    if analysis is None:
        return 0.0, False, False, False
    tfs = [tf for tf in analysis.timeframes if analysis.analyses[tf].available]
    if not tfs:
        return 0.0, False, False, False

    wanted = 'bullish' if direction == 'long' else 'bearish'
    htf = analysis.analyses[tfs[-1]]
    mtf = analysis.analyses[tfs[len(tfs) // 2]] if len(tfs) >= 3 else htf
    ltf = analysis.analyses[tfs[0]]

    htf_supports = htf.bias == wanted
    mtf_confirms = mtf.bias == htf.bias
    ltf_clean = ltf.efficiency > 0.4
    score = (40 if htf_supports else 0) + (35 if mtf_confirms else 0) + (25 if ltf_clean else 0)
    return float(score), htf_supports, mtf_confirms, ltf_clean


def sort_history(history: Iterable[Any], now: Optional[datetime] = None) -> List[Any]:
    """최신순 정렬, now 이후 종료된 거래 제외"""
    items = [t for t in history if now is None or t.closed_at <= now]
    return sorted(items, key=lambda t: t.closed_at, reverse=True)


def compute_sequencing(recent: Sequence[TradeOutcome]) -> Tuple[str, bool, float]:
    """
    (cluster, edge_decaying, edge_decay_rate)

    recent 는 최신순.
    """
    if len(recent) < 3:
        return 'neutral', False, 0.0

    last5 = recent[:5]
    wins = sum(1 for t in last5 if t.pips > 0)
    losses = len(last5) - wins
    cluster = 'neutral'
    if wins >= 4:
        cluster = 'profit-momentum'
    elif losses >= 4:
        cluster = 'loss-cluster'
    elif losses >= 3:
        cluster = 'mixed'

    recent10, older10 = recent[:10], recent[10:20]
    decaying, rate = False, 0.0
    if len(recent10) >= 5 and len(older10) >= 5:
        recent_wr = sum(1 for t in recent10 if t.pips > 0) / len(recent10)
        older_wr = sum(1 for t in older10 if t.pips > 0) / len(older10)
        if older_wr > 0 and recent_wr < older_wr * 0.85:
            decaying = True
            rate = (older_wr - recent_wr) / older_wr * 100
    return cluster, decaying, rate


def is_overtrading(recent: Sequence[TradeOutcome], session: str, now: datetime) -> bool:
    window_trades = [t for t in recent if now - t.closed_at < OVERTRADING_WINDOW]
    return len(window_trades) >= OVERTRADING_LIMITS.get(session, 8)


def _primary(analysis: MultiTimeframeAnalysis, primary_timeframe: str) -> Optional[TimeframeAnalysis]:
    primary = analysis.get(primary_timeframe)
    if primary is not None and primary.available:
        return primary
    for tf in analysis.timeframes:
        if analysis.analyses[tf].available:
            return analysis.analyses[tf]
    return primary


def apply_overrides(ctx: GovernanceContext, overrides: Optional[Dict[str, Any]]) -> GovernanceContext:
    if not overrides:
        return ctx
    unknown = set(overrides) - CONTEXT_FIELDS
    if unknown:
        raise ProposalValidationError(f"Unknown context fields in extra_context: {sorted(unknown)}")
    return replace(ctx, **overrides)


def build_governance_context(
    proposal: TradeProposal,
    instrument: Optional[Instrument],
    analysis: Optional[MultiTimeframeAnalysis],
    now: datetime,
    primary_timeframe: str = '15m',
    trade_history: Iterable[TradeOutcome] = (),
    extra_context: Optional[Dict[str, Any]] = None,
) -> GovernanceContext:
    session = detect_session(now.hour)
    recent = sort_history(trade_history, now)
    cluster, decaying, decay_rate = compute_sequencing(recent)

    score, htf_supports, mtf_confirms, ltf_clean = compute_mtf_alignment(analysis, proposal.direction)

    primary = _primary(analysis, primary_timeframe) if analysis is not None else None
    price_data = instrument is not None and primary is not None and primary.candles > 0

    atr_value = primary.atr if primary is not None and primary.available else 0.0
    atr_avg = primary.atr_avg if primary is not None and primary.available else 0.0
    phase, phase_conf = classify_volatility_phase(atr_value, atr_avg)
    atr_ratio = atr_value / atr_avg if atr_avg > 0 else 1.0

    pair = instrument.canonical if instrument is not None else proposal.canonical_pair
    spread = expected_spread_pips(pair, session, atr_ratio)
    slippage = spread_baseline(pair) * 0.15
    friction = 0.0
    if instrument is not None and atr_value > 0:
        atr_pips = atr_value / instrument.pip_size
        friction = atr_pips / max(spread + slippage, 0.01)

    stability = estimate_spread_stability(session, phase)

    ctx = GovernanceContext(
        mtf_alignment_score=score,
        htf_supports=htf_supports,
        mtf_confirms=mtf_confirms,
        ltf_clean=ltf_clean,
        aggregated_score=analysis.aggregated_score if analysis is not None else 0.0,
        volatility_phase=phase,
        phase_confidence=phase_conf,
        atr_value=atr_value,
        atr_avg=atr_avg,
        spread_stability_rank=stability,
        liquidity_shock_prob=estimate_liquidity_shock(stability, phase, session),
        current_spread_pips=spread,
        slippage_estimate_pips=slippage,
        friction_ratio=friction,
        session=session,
        session_aggressiveness=SESSION_AGGRESSIVENESS.get(session, 50),
        sequencing_cluster=cluster,
        edge_decaying=decaying,
        edge_decay_rate=decay_rate,
        overtrading_throttled=is_overtrading(recent, session, now),
        price_data_available=price_data,
        analysis_available=analysis is not None and analysis.available,
    )
    return apply_overrides(ctx, extra_context)
