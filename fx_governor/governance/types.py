"""
Governance Types
================

TradeProposal -> (gates) -> GateResult[] -> DecisionResult

Gate 는 tagged variant:
- StaticGate  (kind="static")  : 엔진에 컴파일된 predicate, id "G<n>_<NAME>"
- DynamicGate (kind="dynamic") : registry 에 보관되는 데이터 (pair, reason, expires_at)

둘 다 governance.gates.evaluate_gate() 하나로 평가된다 (상속 없음).
"""
import json
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from fx_governor.errors import ProposalValidationError
from fx_governor.market.tickers import is_valid_pair_format, to_canonical

DIRECTIONS = ('long', 'short')


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_range(name: str, value: Any) -> Tuple[float, float]:
    try:
        lo, hi = value
    except (TypeError, ValueError):
        raise ProposalValidationError(f"{name} must be a (min, max) pair, got {value!r}")
    if not (_is_number(lo) and _is_number(hi)) or not (math.isfinite(lo) and math.isfinite(hi)):
        raise ProposalValidationError(f"{name} must contain two finite numbers, got {value!r}")
    return float(lo), float(hi)


# =============================================================================
# Proposal
# =============================================================================

@dataclass(frozen=True)
class TradeProposal:
    """단일 결정의 불변 입력"""
    index: int
    pair: str
    direction: str                        # "long" | "short"
    base_win_probability: float           # 0.0 ~ 1.0
    base_win_range: Tuple[float, float]   # pips, >= 0
    base_loss_range: Tuple[float, float]  # pips, <= 0

    def validate(self) -> 'TradeProposal':
        """
        Fail fast on malformed input (게이트 평가 전).

        Raises:
            ProposalValidationError
        """
        if not isinstance(self.index, int) or isinstance(self.index, bool) or self.index < 0:
            raise ProposalValidationError(f"index must be a non-negative int, got {self.index!r}")
        if not is_valid_pair_format(self.pair):
            raise ProposalValidationError(f"Unknown pair format: {self.pair!r}")
        if self.direction not in DIRECTIONS:
            raise ProposalValidationError(f"direction must be one of {DIRECTIONS}, got {self.direction!r}")

        p = self.base_win_probability
        if not _is_number(p) or not math.isfinite(p) or not 0.0 <= p <= 1.0:
            raise ProposalValidationError(f"base_win_probability must be in [0, 1], got {p!r}")

        win = _check_range("base_win_range", self.base_win_range)
        loss = _check_range("base_loss_range", self.base_loss_range)
        if min(win) < 0:
            raise ProposalValidationError(f"base_win_range must be >= 0 pips, got {win}")
        if max(loss) > 0:
            raise ProposalValidationError(f"base_loss_range must be <= 0 pips, got {loss}")
        return self

    @property
    def canonical_pair(self) -> str:
        return to_canonical(self.pair)

    @property
    def sign(self) -> int:
        return 1 if self.direction == 'long' else -1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TradeProposal':
        """snake_case / camelCase 키 모두 허용"""
        def pick(*keys, default=None):
            for k in keys:
                if k in data:
                    return data[k]
            return default

        return cls(
            index=pick('index', default=0),
            pair=pick('pair'),
            direction=pick('direction'),
            base_win_probability=pick('base_win_probability', 'baseWinProbability'),
            base_win_range=tuple(pick('base_win_range', 'baseWinRange', default=())),
            base_loss_range=tuple(pick('base_loss_range', 'baseLossRange', default=())),
        )

    def to_dict(self) -> dict:
        return {
            'index': self.index,
            'pair': self.pair,
            'direction': self.direction,
            'base_win_probability': self.base_win_probability,
            'base_win_range': list(self.base_win_range),
            'base_loss_range': list(self.base_loss_range),
        }


@dataclass(frozen=True)
class TradeOutcome:
    """Closed trade as seen by sequencing / synthesis (최소 필드)"""
    pair: str
    pips: float
    closed_at: datetime

    @property
    def won(self) -> bool:
        return self.pips > 0


# =============================================================================
# Context
# =============================================================================

@dataclass(frozen=True)
class GovernanceContext:
    """게이트가 읽는 시장/운영 상태 스냅샷"""
    # MTF
    mtf_alignment_score: float = 0.0      # 0 ~ 100
    htf_supports: bool = False
    mtf_confirms: bool = False
    ltf_clean: bool = False
    aggregated_score: float = 0.0         # -1 ~ 1
    # Regime
    volatility_phase: str = 'expansion'   # compression | expansion | ignition | exhaustion
    phase_confidence: float = 0.0
    atr_value: float = 0.0
    atr_avg: float = 0.0
    # Microstructure
    spread_stability_rank: float = 100.0  # 0 ~ 100
    liquidity_shock_prob: float = 0.0     # 0 ~ 100
    current_spread_pips: float = 0.0
    slippage_estimate_pips: float = 0.0
    friction_ratio: float = 0.0
    # Session
    session: str = 'london-open'
    session_aggressiveness: float = 0.0
    # Sequencing
    sequencing_cluster: str = 'neutral'   # neutral | profit-momentum | loss-cluster | mixed
    edge_decaying: bool = False
    edge_decay_rate: float = 0.0
    overtrading_throttled: bool = False
    # Data
    price_data_available: bool = True
    analysis_available: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Gates
# =============================================================================

GatePredicate = Callable[[TradeProposal, GovernanceContext], Optional[str]]


@dataclass(frozen=True)
class StaticGate:
    """predicate -> 메시지 (트리거) / None (통과)"""
    gate_id: str
    description: str
    predicate: GatePredicate
    advisory: bool = False
    kind: str = field(default='static', init=False)


def parse_reason(raw: Any) -> Union[str, Dict[str, Any]]:
    """
    Stored reason -> str | dict.

    JSON 문자열이면 파싱, 'reason' 키가 있는 dict 만 구조화 payload 로 인정.
    그 외는 원문 문자열 그대로.
    """
    if isinstance(raw, dict):
        if 'reason' not in raw:
            raise ValueError("structured gate reason requires a 'reason' field")
        return dict(raw)
    text = '' if raw is None else str(raw)
    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    if isinstance(parsed, dict) and 'reason' in parsed:
        return parsed
    return text


@dataclass(frozen=True)
class DynamicGate:
    """Self-synthesized, time-limited gate (registry 데이터)"""
    gate_id: str
    pair: Optional[str]                  # None = global
    reason: Union[str, Dict[str, Any]]
    created_at: datetime
    expires_at: datetime
    advisory: bool = False
    kind: str = field(default='dynamic', init=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def applies_to(self, pair: str) -> bool:
        return self.pair is None or self.pair == to_canonical(pair)

    @property
    def reason_text(self) -> str:
        if isinstance(self.reason, dict):
            return str(self.reason.get('reason', ''))
        return self.reason

    def to_record(self) -> Dict[str, Any]:
        """Persistence boundary record"""
        reason = json.dumps(self.reason, sort_keys=True) if isinstance(self.reason, dict) else self.reason
        return {
            'gate_id': self.gate_id,
            'pair': self.pair,
            'reason': reason,
            'created_at': self.created_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> 'DynamicGate':
        def _ts(value):
            ts = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
            if ts.tzinfo is not None:
                ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
            return ts

        pair = record.get('pair')
        return cls(
            gate_id=str(record['gate_id']),
            pair=to_canonical(pair) if pair else None,
            reason=parse_reason(record.get('reason')),
            created_at=_ts(record['created_at']),
            expires_at=_ts(record['expires_at']),
            advisory=bool(record.get('advisory', False)),
        )


Gate = Union[StaticGate, DynamicGate]


@dataclass(frozen=True)
class GateResult:
    """게이트 1개 평가 결과 (트리거 여부와 무관하게 보존)"""
    gate_id: str
    kind: str
    message: str
    triggered: bool
    advisory: bool = False

    @property
    def blocking(self) -> bool:
        return self.triggered and not self.advisory

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# Decision
# =============================================================================

class DecisionState(str, Enum):
    PENDING = 'pending'
    READINESS = 'readiness'
    BLOCKED = 'blocked'
    PROCEED = 'proceed'
    SCORED = 'scored'
    DECIDED = 'decided'


@dataclass(frozen=True)
class DecisionResult:
    """Immutable decision output (caller 소유)"""
    proposal: TradeProposal
    admitted: bool
    composite_score: float
    gate_results: Tuple[GateResult, ...]
    context_snapshot: Dict[str, Any]
    readiness: Optional[Any] = None
    score_breakdown: Dict[str, float] = field(default_factory=dict)
    state_path: Tuple[DecisionState, ...] = ()
    decided_at: Optional[datetime] = None

    @property
    def triggered_gates(self) -> List[GateResult]:
        return [g for g in self.gate_results if g.triggered]

    @property
    def triggered_gate_ids(self) -> List[str]:
        return [g.gate_id for g in self.gate_results if g.triggered]

    @property
    def blocking_gates(self) -> List[GateResult]:
        return [g for g in self.gate_results if g.blocking]

    @property
    def rejection_reasons(self) -> List[str]:
        return [f"{g.gate_id}: {g.message}" for g in self.gate_results if g.triggered]

    @property
    def analysis_available(self) -> bool:
        return bool(self.context_snapshot.get('analysis_available', False))

    def to_dict(self) -> dict:
        return {
            'proposal': self.proposal.to_dict(),
            'admitted': self.admitted,
            'composite_score': self.composite_score,
            'gate_results': [g.to_dict() for g in self.gate_results],
            'triggered_gates': self.triggered_gate_ids,
            'context_snapshot': dict(self.context_snapshot),
            'score_breakdown': dict(self.score_breakdown),
            'state_path': [s.value for s in self.state_path],
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
        }


def count_triggered(results: Sequence[GateResult]) -> Tuple[int, int]:
    """(blocking, advisory) 트리거 수"""
    blocking = sum(1 for r in results if r.triggered and not r.advisory)
    advisory = sum(1 for r in results if r.triggered and r.advisory)
    return blocking, advisory
