"""
Composite Scorer
================

score = clip( w_p · p
            + w_a · analysis_component
            - gate_penalty · n_blocking
            - advisory_penalty · n_advisory , floor, ceiling )

analysis_component = 0.5 + 0.5 · (aggregated_score × direction sign)   (analysis 있을 때)
                   = 0                                                   (없을 때)

핵심 원칙:
- 항상 finite (reject 된 proposal 도 순위 비교 가능)
- 트리거 gate 1개 추가 -> score 증가 불가 (penalty >= 0)
- 가중치는 설정값 (config/default.yaml: scoring)
"""
import math
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

from fx_governor.governance.types import GateResult, count_triggered


@dataclass
class ScoringWeights:
    win_probability_weight: float = 0.6
    analysis_weight: float = 0.4
    gate_penalty: float = 0.15        # blocking gate 당
    advisory_penalty: float = 0.05    # advisory gate 당
    floor: float = -1.0
    ceiling: float = 1.0

    def validate(self) -> 'ScoringWeights':
        values = [self.win_probability_weight, self.analysis_weight, self.gate_penalty,
                  self.advisory_penalty, self.floor, self.ceiling]
        if not all(math.isfinite(v) for v in values):
            raise ValueError("scoring weights must be finite")
        if min(self.win_probability_weight, self.analysis_weight) < 0:
            raise ValueError("component weights must be >= 0")
        if min(self.gate_penalty, self.advisory_penalty) < 0:
            raise ValueError("gate penalties must be >= 0 (monotonicity)")
        if self.floor >= self.ceiling:
            raise ValueError(f"floor {self.floor} must be < ceiling {self.ceiling}")
        return self


def _finite(x: Optional[float], default: float = 0.0) -> float:
    if x is None:
        return default
    x = float(x)
    return x if math.isfinite(x) else default


class CompositeScorer:
    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = (weights or ScoringWeights()).validate()

    def breakdown(
        self,
        win_probability: float,
        aggregated_score: float,
        analysis_available: bool,
        direction: str,
        n_blocking: int,
        n_advisory: int = 0,
    ) -> Dict[str, float]:
        w = self.weights
        sign = 1.0 if direction == 'long' else -1.0
        aligned = max(-1.0, min(1.0, _finite(aggregated_score) * sign))
        analysis_component = 0.5 + 0.5 * aligned if analysis_available else 0.0

        probability_term = w.win_probability_weight * _finite(win_probability)
        analysis_term = w.analysis_weight * analysis_component
        penalty = w.gate_penalty * n_blocking + w.advisory_penalty * n_advisory

        raw = probability_term + analysis_term - penalty
        if not math.isfinite(raw):
            raw = w.floor
        return {
            'probability_term': probability_term,
            'analysis_term': analysis_term,
            'gate_penalty': penalty,
            'raw': raw,
            'score': max(w.floor, min(w.ceiling, raw)),
        }

    def score(
        self,
        win_probability: float,
        aggregated_score: float,
        analysis_available: bool,
        direction: str,
        n_blocking: int,
        n_advisory: int = 0,
    ) -> float:
        return self.breakdown(
            win_probability, aggregated_score, analysis_available, direction, n_blocking, n_advisory
        )['score']

    def score_results(
        self,
        win_probability: float,
        aggregated_score: float,
        analysis_available: bool,
        direction: str,
        gate_results: Sequence[GateResult],
    ) -> Dict[str, float]:
        n_blocking, n_advisory = count_triggered(gate_results)
        return self.breakdown(
            win_probability, aggregated_score, analysis_available, direction, n_blocking, n_advisory
        )
