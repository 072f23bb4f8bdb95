"""
Gate Evaluator
==============

고정 순서 static gate 카탈로그 + static/dynamic 공통 평가 계약.

| id                          | trigger                                             |
|-----------------------------|-----------------------------------------------------|
| G1_FRICTION                 | friction_ratio < 3                                  |
| G2_NO_HTF_WEAK_MTF          | not htf_supports and mtf_alignment_score < 35       |
| G3_EDGE_DECAY               | edge_decaying and edge_decay_rate > 20              |
| G4_SPREAD_INSTABILITY       | spread_stability_rank < 30                          |
| G5_COMPRESSION_LOW_SESSION  | session_aggressiveness < 30 and phase=compression   |
| G6_OVERTRADING              | overtrading_throttled                               |
| G7_LOSS_CLUSTER_WEAK_MTF    | loss-cluster and mtf_alignment_score < 55           |
| G8_HIGH_SHOCK               | liquidity_shock_prob > 70 and phase != ignition     |
| G9_PRICE_DATA_UNAVAILABLE   | not price_data_available                            |
| G10_ANALYSIS_UNAVAILABLE    | analysis_available is False  (iff)                  |

핵심 원칙:
- 모든 게이트를 매번 평가 (short-circuit 없음) -> 감사 로그에 전체 판정
- 각 predicate 는 (proposal, context) 의 순수 함수
- advisory 여부는 게이트의 명시 속성 (기본 blocking)
"""
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from fx_governor.governance.types import (
    Gate,
    GateResult,
    GovernanceContext,
    StaticGate,
    TradeProposal,
)

FRICTION_MIN_RATIO = 3.0


def _g1_friction(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.friction_ratio < FRICTION_MIN_RATIO:
        return f"Friction ratio {ctx.friction_ratio:.1f}× < {FRICTION_MIN_RATIO:.0f}× threshold"
    return None


def _g2_no_htf_weak_mtf(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if not ctx.htf_supports and ctx.mtf_alignment_score < 35:
        return f"MTF alignment {ctx.mtf_alignment_score:.0f}% without HTF support"
    return None


def _g3_edge_decay(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.edge_decaying and ctx.edge_decay_rate > 20:
        return f"Edge decaying {ctx.edge_decay_rate:.0f}%"
    return None


def _g4_spread_instability(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.spread_stability_rank < 30:
        return f"Spread instability {ctx.spread_stability_rank:.0f}%"
    return None


def _g5_compression_low_session(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.session_aggressiveness < 30 and ctx.volatility_phase == 'compression':
        return "Compression + low-activity session"
    return None


def _g6_overtrading(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.overtrading_throttled:
        return "Anti-overtrading governor active"
    return None


def _g7_loss_cluster_weak_mtf(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.sequencing_cluster == 'loss-cluster' and ctx.mtf_alignment_score < 55:
        return f"Loss cluster + weak alignment {ctx.mtf_alignment_score:.0f}%"
    return None


def _g8_high_shock(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.liquidity_shock_prob > 70 and ctx.volatility_phase != 'ignition':
        return f"High shock risk {ctx.liquidity_shock_prob:.0f}% outside ignition"
    return None


def _g9_price_data_unavailable(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if not ctx.price_data_available:
        return "Price data unavailable"
    return None


def _g10_analysis_unavailable(proposal: TradeProposal, ctx: GovernanceContext) -> Optional[str]:
    if ctx.analysis_available is False:
        return "Multi-timeframe analysis unavailable"
    return None


STATIC_GATES: Tuple[StaticGate, ...] = (
    StaticGate('G1_FRICTION', "ATR too small relative to spread + slippage", _g1_friction),
    StaticGate('G2_NO_HTF_WEAK_MTF', "No HTF support and weak MTF alignment", _g2_no_htf_weak_mtf),
    StaticGate('G3_EDGE_DECAY', "Recent win rate decaying vs prior window", _g3_edge_decay),
    StaticGate('G4_SPREAD_INSTABILITY', "Spread unstable", _g4_spread_instability),
    StaticGate('G5_COMPRESSION_LOW_SESSION', "Compression phase in a low-activity session", _g5_compression_low_session),
    StaticGate('G6_OVERTRADING', "Too many trades in the session window", _g6_overtrading),
    StaticGate('G7_LOSS_CLUSTER_WEAK_MTF', "Loss cluster without strong alignment", _g7_loss_cluster_weak_mtf),
    StaticGate('G8_HIGH_SHOCK', "Liquidity shock risk outside ignition", _g8_high_shock),
    StaticGate('G9_PRICE_DATA_UNAVAILABLE', "No price data for the instrument", _g9_price_data_unavailable),
    StaticGate('G10_ANALYSIS_UNAVAILABLE', "Required analysis missing", _g10_analysis_unavailable),
)

STATIC_GATE_IDS: Tuple[str, ...] = tuple(g.gate_id for g in STATIC_GATES)


def build_static_gates(advisory: Iterable[str] = ()) -> Tuple[StaticGate, ...]:
    """카탈로그 복사본 (지정된 id 만 advisory)"""
    advisory = set(advisory)
    unknown = advisory - set(STATIC_GATE_IDS)
    if unknown:
        raise ValueError(f"Unknown static gate ids: {sorted(unknown)}")
    return tuple(replace(g, advisory=g.gate_id in advisory) for g in STATIC_GATES)


def evaluate_gate(gate: Gate, proposal: TradeProposal, ctx: Optional[GovernanceContext] = None) -> GateResult:
    """
    Shared evaluation contract for both gate kinds.

    dynamic gate 는 registry 가 live + pair 매칭을 보장한 상태로 넘어오므로 항상 트리거.
    """
    if gate.kind == 'static':
        message = gate.predicate(proposal, ctx)
        return GateResult(
            gate_id=gate.gate_id,
            kind=gate.kind,
            message=message if message is not None else "pass",
            triggered=message is not None,
            advisory=gate.advisory,
        )
    if gate.kind == 'dynamic':
        return GateResult(
            gate_id=gate.gate_id,
            kind=gate.kind,
            message=gate.reason_text or "Dynamic gate active",
            triggered=True,
            advisory=gate.advisory,
        )
    raise ValueError(f"Unknown gate kind: {gate.kind!r}")


class GateEvaluator:
    """Ordered static catalogue evaluator"""

    def __init__(self, gates: Optional[Sequence[StaticGate]] = None, advisory: Iterable[str] = ()):
        self.gates: Tuple[StaticGate, ...] = tuple(gates) if gates is not None else build_static_gates(advisory)

    @property
    def gate_ids(self) -> List[str]:
        return [g.gate_id for g in self.gates]

    def evaluate(self, proposal: TradeProposal, ctx: GovernanceContext) -> List[GateResult]:
        return [evaluate_gate(g, proposal, ctx) for g in self.gates]
