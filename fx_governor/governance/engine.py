"""
Decision Engine
===============

proposal in -> full decision out (admit/reject, gate 감사 로그, composite score, context).

State path (호출 1회):
    PENDING -> READINESS -> {BLOCKED | PROCEED} -> SCORED -> DECIDED

핵심 원칙:
- malformed proposal -> ProposalValidationError (게이트 평가 전, 즉시)
- 데이터 부족 -> G10 트리거 (예외 아님), score 는 항상 finite
- static gate 전부 + live dynamic gate 전부 평가 (short-circuit 없음)
- admitted <=> blocking gate 트리거 0 개
- 호출 간 부작용은 registry eviction 뿐

Usage:
```python
engine = DecisionEngine.build(source)
result = engine.evaluate_full_decision(proposal, "15m", now=now)

result.admitted
result.triggered_gates      # [GateResult]
result.composite_score
result.context_snapshot["analysis_available"]
```
"""
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from fx_governor.analysis.multi_tf import AnalyzerConfig, MultiTimeframeAnalyzer
from fx_governor.analysis.readiness import ReadinessChecker
from fx_governor.errors import RegistryError
from fx_governor.governance.context import build_governance_context
from fx_governor.governance.gates import GateEvaluator
from fx_governor.governance.registry import DynamicGateRegistry
from fx_governor.governance.scoring import CompositeScorer, ScoringWeights
from fx_governor.governance.types import (
    DecisionResult,
    DecisionState,
    TradeOutcome,
    TradeProposal,
)
from fx_governor.market.candles import CandleSource, to_utc_timestamp
from fx_governor.market.tickers import TickerResolver
from fx_governor.utils.timeframe import TimeframeSpec

logger = logging.getLogger(__name__)


class DecisionEngine:
    """Readiness -> analysis -> gates -> score, one call at a time."""

    def __init__(
        self,
        readiness: ReadinessChecker,
        registry: Optional[DynamicGateRegistry] = None,
        gate_evaluator: Optional[GateEvaluator] = None,
        scorer: Optional[CompositeScorer] = None,
        timeframes: Optional[Sequence[str]] = None,
    ):
        self.readiness = readiness
        self.registry = registry if registry is not None else DynamicGateRegistry()
        self.gates = gate_evaluator or GateEvaluator()
        self.scorer = scorer or CompositeScorer()
        self.timeframes = tuple(timeframes or readiness.analyzer.config.timeframes)

        self.stats = {
            'evaluated': 0,
            'admitted': 0,
            'rejected': 0,
        }

    @classmethod
    def build(
        cls,
        source: CandleSource,
        registry: Optional[DynamicGateRegistry] = None,
        analyzer_config: Optional[AnalyzerConfig] = None,
        weights: Optional[ScoringWeights] = None,
        advisory_gates: Iterable[str] = (),
        resolver: Optional[TickerResolver] = None,
    ) -> 'DecisionEngine':
        analyzer = MultiTimeframeAnalyzer(source, analyzer_config)
        return cls(
            readiness=ReadinessChecker(resolver or TickerResolver(), analyzer),
            registry=registry,
            gate_evaluator=GateEvaluator(advisory=advisory_gates),
            scorer=CompositeScorer(weights),
        )

    @classmethod
    def from_settings(
        cls,
        source: CandleSource,
        settings,
        registry: Optional[DynamicGateRegistry] = None,
    ) -> 'DecisionEngine':
        """GovernanceSettings (fx_governor.config) -> engine"""
        return cls.build(
            source,
            registry=registry,
            analyzer_config=settings.analyzer,
            weights=settings.scoring,
            advisory_gates=settings.advisory_gates,
        )

    @property
    def resolver(self) -> TickerResolver:
        return self.readiness.resolver

    def evaluate_full_decision(
        self,
        proposal: TradeProposal,
        primary_timeframe: str = '15m',
        extra_context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
        as_of: Optional[datetime] = None,
        trade_history: Iterable[TradeOutcome] = (),
    ) -> DecisionResult:
        """
        Args:
            proposal: TradeProposal (validated here, before any gate)
            primary_timeframe: ATR / friction / phase 기준 TF
            extra_context: GovernanceContext 필드 덮어쓰기
            now: decision clock (default: utcnow). dynamic gate 만료 + 세션 기준
            as_of: candle cut-off (default: now). 이 시점까지 마감된 bar 만 사용
            trade_history: 최근 종료 거래 (sequencing / overtrading)

        Raises:
            ProposalValidationError: malformed proposal / unknown context field
        """
        proposal.validate()
        TimeframeSpec.from_string(primary_timeframe)

        now = to_utc_timestamp(now if now is not None else datetime.now(timezone.utc)).to_pydatetime()
        as_of = to_utc_timestamp(as_of).to_pydatetime() if as_of is not None else now
        path = [DecisionState.PENDING]

        # registry bookkeeping: 실패해도 결정은 계속 (last-known-good 유지)
        try:
            self.registry.evict_expired(now)
        except RegistryError as e:
            logger.warning(f"[Engine] eviction skipped: {e}")

        # ---- Readiness (+ analysis, 1회) ----
        path.append(DecisionState.READINESS)
        timeframes = tuple(dict.fromkeys(self.timeframes + (primary_timeframe,)))
        readiness, analysis = self.readiness.assess(proposal.pair, timeframes, as_of=as_of)
        instrument = self.resolver.resolve(proposal.pair) if readiness.ticker_found else None
        path.append(DecisionState.PROCEED if readiness.ready else DecisionState.BLOCKED)

        ctx = build_governance_context(
            proposal,
            instrument,
            analysis,
            now=now,
            primary_timeframe=primary_timeframe,
            trade_history=trade_history,
            extra_context=extra_context,
        )

        # ---- Gates (static 전부 + live dynamic 전부) ----
        gate_results = self.gates.evaluate(proposal, ctx) + self.registry.evaluate(proposal, now)

        # ---- Score ----
        breakdown = self.scorer.score_results(
            win_probability=proposal.base_win_probability,
            aggregated_score=ctx.aggregated_score,
            analysis_available=ctx.analysis_available,
            direction=proposal.direction,
            gate_results=gate_results,
        )
        path.append(DecisionState.SCORED)

        admitted = not any(g.blocking for g in gate_results)
        path.append(DecisionState.DECIDED)

        snapshot = ctx.to_dict()
        snapshot['pair'] = instrument.canonical if instrument is not None else proposal.pair
        snapshot['primary_timeframe'] = primary_timeframe
        snapshot['as_of'] = as_of.isoformat()
        snapshot['dynamic_gates_active'] = self.registry.active_count(now)
        if analysis is not None:
            snapshot['analysis'] = analysis.to_dict()

        result = DecisionResult(
            proposal=proposal,
            admitted=admitted,
            composite_score=breakdown['score'],
            gate_results=tuple(gate_results),
            context_snapshot=snapshot,
            readiness=readiness,
            score_breakdown=breakdown,
            state_path=tuple(path),
            decided_at=now,
        )

        self.stats['evaluated'] += 1
        self.stats['admitted' if admitted else 'rejected'] += 1
        logger.debug(
            f"[Engine] #{proposal.index} {proposal.pair} {proposal.direction} "
            f"admitted={admitted} score={result.composite_score:.3f} "
            f"gates={result.triggered_gate_ids}"
        )
        return result

    def evaluate_batch(
        self,
        proposals: Sequence[TradeProposal],
        primary_timeframe: str = '15m',
        extra_context: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
        as_of: Optional[datetime] = None,
        trade_history: Iterable[TradeOutcome] = (),
    ) -> List[DecisionResult]:
        history = list(trade_history)
        return [
            self.evaluate_full_decision(p, primary_timeframe, extra_context, now, as_of, history)
            for p in proposals
        ]

    def get_status(self) -> dict:
        total = self.stats['evaluated']
        return {
            **self.stats,
            'approval_rate': self.stats['admitted'] / total if total else 0.0,
            'dynamic_gates_created': self.registry.total_gates_created,
        }


# =============================================================================
# Aggregate stats
# =============================================================================

@dataclass(frozen=True)
class GovernanceStats:
    total: int
    admitted: int
    rejected: int
    approval_rate: float
    rejection_rate: float
    avg_composite_score: float
    top_rejection_gates: List[Tuple[str, int]]


def compute_governance_stats(results: Sequence[DecisionResult], top_n: int = 5) -> GovernanceStats:
    total = len(results)
    admitted = sum(1 for r in results if r.admitted)
    gate_counts = Counter(
        g.gate_id.split(':')[0]
        for r in results if not r.admitted
        for g in r.triggered_gates
    )
    return GovernanceStats(
        total=total,
        admitted=admitted,
        rejected=total - admitted,
        approval_rate=admitted / total if total else 0.0,
        rejection_rate=(total - admitted) / total if total else 0.0,
        avg_composite_score=sum(r.composite_score for r in results) / total if total else 0.0,
        top_rejection_gates=gate_counts.most_common(top_n),
    )
