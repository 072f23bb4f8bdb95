"""
Dynamic Gate Registry
=====================

Self-synthesized, time-limited gate 저장소.

핵심 원칙:
- lifecycle: DynamicGateRegistry() (empty) -> add / create -> evict_expired -> snapshot
- 만료 검사는 평가 시점에 lazy (now >= expires_at), 백그라운드 타이머 없음
- 만료 gate 는 평가/active count 에서 제외, audit log 에는 남음
- total_gates_created 는 단조 증가 (절대 감소하지 않음)
- 변경은 lock + copy-on-write: reader 는 항상 완성된 dict 만 본다
- 변경 실패 -> RegistryError, 이전 상태(last-known-good) 유지
- evaluate() 는 순수 read

사용법:
```python
registry = DynamicGateRegistry()
registry.create("G13_LOSS_STREAK:EUR_USD", {"reason": "3 consecutive losses"},
                now=now, ttl_minutes=240, pair="EUR_USD")

results = registry.evaluate(proposal, now)   # live + pair 매칭 gate -> GateResult
registry.evict_expired(later)
registry.snapshot(later).active_count
```
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from fx_governor.errors import GovernanceError, RegistryError
from fx_governor.governance.gates import evaluate_gate
from fx_governor.governance.types import (
    DynamicGate,
    GateResult,
    TradeOutcome,
    TradeProposal,
    parse_reason,
)
from fx_governor.market.tickers import to_canonical

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryEvent:
    """Audit log entry"""
    action: str          # created | evicted | revoked
    gate_id: str
    pair: Optional[str]
    at: datetime
    detail: str = ""

    def to_dict(self) -> dict:
        return {
            'action': self.action,
            'gate_id': self.gate_id,
            'pair': self.pair,
            'at': self.at.isoformat(),
            'detail': self.detail,
        }


@dataclass(frozen=True)
class RegistrySnapshot:
    active: Tuple[DynamicGate, ...]
    total_gates_created: int
    audit_log: Tuple[RegistryEvent, ...]

    @property
    def active_count(self) -> int:
        return len(self.active)


class DynamicGateRegistry:
    """Process-wide dynamic gate state, passed explicitly into the engine."""

    def __init__(self):
        self._lock = threading.Lock()
        self._gates: Dict[str, DynamicGate] = {}
        self._audit: Tuple[RegistryEvent, ...] = ()
        self._total_created = 0

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, gate: DynamicGate) -> DynamicGate:
        """
        Register a gate (same id -> replaced, still counted as created).

        Raises:
            RegistryError: invalid gate; registry unchanged
        """
        try:
            if not gate.gate_id:
                raise ValueError("gate_id must be non-empty")
            if gate.created_at.tzinfo is not None or gate.expires_at.tzinfo is not None:
                raise ValueError("gate timestamps must be naive UTC")
            if gate.expires_at <= gate.created_at:
                raise ValueError(f"expires_at {gate.expires_at} <= created_at {gate.created_at}")
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"[Registry] rejected gate {getattr(gate, 'gate_id', '?')}: {e}")
            raise RegistryError(f"Invalid dynamic gate: {e}") from e

        event = RegistryEvent('created', gate.gate_id, gate.pair, gate.created_at, gate.reason_text)
        with self._lock:
            gates = dict(self._gates)
            gates[gate.gate_id] = gate
            self._gates = gates
            self._audit = self._audit + (event,)
            self._total_created += 1

        logger.info(f"[Registry] + {gate.gate_id} pair={gate.pair or 'GLOBAL'} until {gate.expires_at}")
        return gate

    def create(
        self,
        gate_id: str,
        reason: Union[str, Dict[str, Any]],
        now: datetime,
        ttl_minutes: float,
        pair: Optional[str] = None,
        advisory: bool = False,
    ) -> DynamicGate:
        try:
            gate = DynamicGate(
                gate_id=gate_id,
                pair=to_canonical(pair) if pair else None,
                reason=parse_reason(reason),
                created_at=now,
                expires_at=now + timedelta(minutes=ttl_minutes),
                advisory=advisory,
            )
        except (GovernanceError, TypeError, ValueError) as e:
            logger.warning(f"[Registry] failed to synthesize {gate_id}: {e}")
            raise RegistryError(f"Cannot create dynamic gate {gate_id}: {e}") from e
        return self.add(gate)

    def evict_expired(self, now: datetime) -> List[str]:
        """Drop gates with now >= expires_at. Returns evicted ids."""
        with self._lock:
            try:
                expired = [g for g in self._gates.values() if g.is_expired(now)]
            except TypeError as e:
                logger.warning(f"[Registry] eviction failed, keeping last-known-good state: {e}")
                raise RegistryError(f"Eviction failed: {e}") from e
            if not expired:
                return []
            ids = {g.gate_id for g in expired}
            self._gates = {k: v for k, v in self._gates.items() if k not in ids}
            self._audit = self._audit + tuple(
                RegistryEvent('evicted', g.gate_id, g.pair, now, f"expired at {g.expires_at}")
                for g in expired
            )

        logger.info(f"[Registry] - evicted {sorted(ids)}")
        return sorted(ids)

    def revoke(self, gate_id: str, now: datetime, detail: str = "") -> bool:
        with self._lock:
            gate = self._gates.get(gate_id)
            if gate is None:
                return False
            self._gates = {k: v for k, v in self._gates.items() if k != gate_id}
            self._audit = self._audit + (RegistryEvent('revoked', gate_id, gate.pair, now, detail),)
        logger.info(f"[Registry] revoked {gate_id}")
        return True

    def load_records(self, records: Iterable[Dict[str, Any]], now: datetime) -> Tuple[int, int]:
        """
        Persisted records -> registry (만료된 것은 건너뜀).

        Returns:
            (loaded, errors)
        """
        loaded = errors = 0
        for record in records:
            try:
                gate = DynamicGate.from_record(record)
                if gate.is_expired(now):
                    continue
                self.add(gate)
                loaded += 1
            except (GovernanceError, KeyError, TypeError, ValueError) as e:
                errors += 1
                logger.warning(f"[Registry] skipped record {record!r}: {e}")
        return loaded, errors

    # ------------------------------------------------------------------
    # Reads (no mutation)
    # ------------------------------------------------------------------

    def active_gates(self, now: datetime, pair: Optional[str] = None) -> List[DynamicGate]:
        gates = self._gates
        return [
            g for g in gates.values()
            if not g.is_expired(now) and (pair is None or g.applies_to(pair))
        ]

    def active_count(self, now: datetime) -> int:
        return len(self.active_gates(now))

    def is_live(self, gate_id: str, now: datetime) -> bool:
        gate = self._gates.get(gate_id)
        return gate is not None and not gate.is_expired(now)

    @property
    def total_gates_created(self) -> int:
        return self._total_created

    @property
    def audit_log(self) -> Tuple[RegistryEvent, ...]:
        return self._audit

    def snapshot(self, now: datetime) -> RegistrySnapshot:
        return RegistrySnapshot(
            active=tuple(self.active_gates(now)),
            total_gates_created=self._total_created,
            audit_log=self._audit,
        )

    def evaluate(self, proposal: TradeProposal, now: datetime) -> List[GateResult]:
        """Live gates for the proposal's pair (+ global) -> GateResult (all triggered)."""
        live = self.active_gates(now, proposal.canonical_pair)
        return [evaluate_gate(g, proposal) for g in sorted(live, key=lambda g: (g.created_at, g.gate_id))]

    def export_records(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        gates = self._gates.values() if now is None else self.active_gates(now)
        return [g.to_record() for g in gates]


# =============================================================================
# Synthesis policy
# =============================================================================

@dataclass
class SynthesisPolicy:
    """실패 패턴 -> dynamic gate 생성 규칙"""
    enabled: bool = True
    loss_streak: int = 3              # pair 연속 손실 -> G13
    ttl_minutes: float = 240          # 4h
    global_loss_streak: int = 6       # 전체 연속 손실 -> G14 (global)
    global_ttl_minutes: float = 120


class FailurePatternSynthesizer:
    """
    Closed trade outcome 을 관찰해 반복 손실 패턴에 gate 를 생성.

    - G13_LOSS_STREAK:<PAIR>   pair-scoped
    - G14_GLOBAL_LOSS_STREAK   global (pair=None)

    RegistryError 는 로그만 남기고 삼킨다 (진행 중인 결정을 막지 않음).
    """

    def __init__(self, registry: DynamicGateRegistry, policy: Optional[SynthesisPolicy] = None):
        self.registry = registry
        self.policy = policy or SynthesisPolicy()
        self._pair_streaks: Dict[str, int] = {}
        self._global_streak = 0

    def reset(self) -> None:
        self._pair_streaks = {}
        self._global_streak = 0

    def observe(self, outcome: TradeOutcome, now: Optional[datetime] = None) -> List[DynamicGate]:
        if not self.policy.enabled:
            return []
        now = now or outcome.closed_at
        pair = to_canonical(outcome.pair)

        if outcome.pips > 0:
            self._pair_streaks[pair] = 0
            self._global_streak = 0
            return []

        self._pair_streaks[pair] = self._pair_streaks.get(pair, 0) + 1
        self._global_streak += 1

        created = []
        streak = self._pair_streaks[pair]
        if streak >= self.policy.loss_streak:
            gate = self._synthesize(
                f"G13_LOSS_STREAK:{pair}",
                {'reason': f"{streak} consecutive losses on {pair}", 'pattern': 'loss_streak', 'losses': streak},
                now, self.policy.ttl_minutes, pair,
            )
            if gate is not None:
                created.append(gate)
                self._pair_streaks[pair] = 0

        if self._global_streak >= self.policy.global_loss_streak:
            gate = self._synthesize(
                "G14_GLOBAL_LOSS_STREAK",
                {'reason': f"{self._global_streak} consecutive losses across pairs",
                 'pattern': 'global_loss_streak', 'losses': self._global_streak},
                now, self.policy.global_ttl_minutes, None,
            )
            if gate is not None:
                created.append(gate)
                self._global_streak = 0

        return created

    def _synthesize(self, gate_id, reason, now, ttl, pair) -> Optional[DynamicGate]:
        if self.registry.is_live(gate_id, now):
            return None
        try:
            return self.registry.create(gate_id, reason, now=now, ttl_minutes=ttl, pair=pair)
        except RegistryError as e:
            logger.warning(f"[Synthesis] {gate_id} not created: {e}")
            return None
