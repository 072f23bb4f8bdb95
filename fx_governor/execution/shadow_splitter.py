"""
Shadow Order Splitter
=====================

Admitted decision -> primary leg + correlated shadow legs (sizing + fill bookkeeping).

핵심 원칙:
- primary 는 원래 pair / direction
- shadow 는 상관 종목 맵(SHADOW_MAPS)에서 최대 3개, weight 비례 배분
- Σ leg.units == total_units (정수 반올림 잔여분은 primary 로, 버리지 않음)
- 실제 주문은 외부 collaborator. 여기서는 status 만 추적
- all_filled <=> 모든 leg 가 FILLED 또는 SIMULATED

사용법:
```python
splitter = ShadowOrderSplitter()
plan = splitter.split(decision, total_units=1000)

plan.legs[0].units          # primary (400 + 잔여)
plan.simulate()             # 브로커 없이 전부 SIMULATED
plan.all_filled             # True
```
"""
import hashlib
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fx_governor.governance.types import DecisionResult
from fx_governor.market.tickers import to_canonical

MAX_SHADOW_LEGS = 3
DEFAULT_PRIMARY_WEIGHT = 0.4

# primary -> [(shadow pair, weight, same direction)]
SHADOW_MAPS: Dict[str, List[Tuple[str, float, bool]]] = {
    'EUR_USD': [('EUR_GBP', 0.30, True), ('EUR_JPY', 0.25, True), ('GBP_USD', 0.15, False)],
    'GBP_USD': [('EUR_GBP', 0.30, False), ('GBP_JPY', 0.25, True), ('EUR_USD', 0.15, False)],
    'USD_JPY': [('EUR_JPY', 0.30, True), ('GBP_JPY', 0.25, True), ('AUD_JPY', 0.15, True)],
    'AUD_USD': [('NZD_USD', 0.35, True), ('AUD_JPY', 0.25, True), ('EUR_AUD', 0.15, False)],
    'NZD_USD': [('AUD_USD', 0.35, True), ('AUD_NZD', 0.25, False)],
    'EUR_GBP': [('EUR_USD', 0.30, True), ('GBP_USD', 0.30, False)],
}

LEG_STATUSES = ('PENDING', 'FILLED', 'SIMULATED', 'REJECTED', 'ERROR')
DONE_STATUSES = ('FILLED', 'SIMULATED')


@dataclass
class ShadowLeg:
    pair: str
    direction: str
    units: int
    role: str            # PRIMARY | SHADOW
    weight: float
    burst_index: int
    status: str = 'PENDING'
    order_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'pair': self.pair,
            'direction': self.direction,
            'units': self.units,
            'role': self.role,
            'weight': self.weight,
            'burst_index': self.burst_index,
            'status': self.status,
            'order_id': self.order_id,
            'error': self.error,
        }


@dataclass
class ShadowSplitPlan:
    signal_id: str
    primary_pair: str
    direction: str
    total_units: int
    legs: List[ShadowLeg] = field(default_factory=list)
    created_at: Optional[datetime] = None

    @property
    def primary(self) -> ShadowLeg:
        return self.legs[0]

    @property
    def shadows(self) -> List[ShadowLeg]:
        return self.legs[1:]

    @property
    def allocated_units(self) -> int:
        return sum(leg.units for leg in self.legs)

    @property
    def all_filled(self) -> bool:
        return all(leg.status in DONE_STATUSES for leg in self.legs)

    def mark_leg(self, index: int, status: str, order_id: Optional[str] = None, error: Optional[str] = None) -> None:
        if status not in LEG_STATUSES:
            raise ValueError(f"Unknown leg status: {status!r}")
        leg = self.legs[index]
        leg.status = status
        leg.order_id = order_id
        leg.error = error

    def simulate(self) -> 'ShadowSplitPlan':
        """No broker: every leg -> SIMULATED"""
        for leg in self.legs:
            leg.status = 'SIMULATED'
        return self

    def to_audit_payload(self) -> dict:
        return {
            'signal_id': self.signal_id,
            'primary_pair': self.primary_pair,
            'direction': self.direction,
            'total_units': self.total_units,
            'primary_units': self.primary.units,
            'shadow_legs': len(self.shadows),
            'legs': [leg.to_dict() for leg in self.legs],
            'all_filled': self.all_filled,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


def _opposite(direction: str) -> str:
    return 'short' if direction == 'long' else 'long'


class ShadowOrderSplitter:
    def __init__(
        self,
        shadow_maps: Optional[Dict[str, List[Tuple[str, float, bool]]]] = None,
        max_shadow_legs: int = MAX_SHADOW_LEGS,
    ):
        self.shadow_maps = SHADOW_MAPS if shadow_maps is None else shadow_maps
        self.max_shadow_legs = max_shadow_legs

    def split(
        self,
        decision: DecisionResult,
        total_units: int,
        primary_weight: Optional[float] = None,
        signal_id: Optional[str] = None,
    ) -> ShadowSplitPlan:
        """
        Raises:
            ValueError: decision 미승인 / total_units <= 0 / primary_weight 범위 밖
        """
        if not decision.admitted:
            raise ValueError("Cannot split a rejected decision")
        if isinstance(total_units, bool) or not isinstance(total_units, int) or total_units <= 0:
            raise ValueError(f"total_units must be a positive int, got {total_units!r}")

        proposal = decision.proposal
        pair = to_canonical(proposal.pair)
        shadows = list(self.shadow_maps.get(pair, []))[:self.max_shadow_legs]

        weight = primary_weight
        if weight is None:
            weight = DEFAULT_PRIMARY_WEIGHT if shadows else 1.0
        if not (isinstance(weight, (int, float)) and math.isfinite(weight) and 0 < weight <= 1):
            raise ValueError(f"primary_weight must be in (0, 1], got {weight!r}")
        if weight >= 1:
            shadows = []

        shadow_pool = total_units - int(round(total_units * weight))
        total_shadow_weight = sum(w for _, w, _ in shadows)

        legs: List[ShadowLeg] = []
        for i, (shadow_pair, w, same) in enumerate(shadows, start=1):
            # floor -> 합계가 pool 을 넘지 않음
            units = int(shadow_pool * w / total_shadow_weight) if total_shadow_weight > 0 else 0
            if units <= 0:
                continue
            legs.append(ShadowLeg(
                pair=shadow_pair,
                direction=proposal.direction if same else _opposite(proposal.direction),
                units=units,
                role='SHADOW',
                weight=w,
                burst_index=i,
            ))

        primary = ShadowLeg(
            pair=pair,
            direction=proposal.direction,
            units=total_units - sum(leg.units for leg in legs),
            role='PRIMARY',
            weight=weight,
            burst_index=0,
        )

        if signal_id is None:
            blob = f"{pair}|{proposal.direction}|{proposal.index}|{decision.decided_at}".encode("utf-8")
            signal_id = f"shadow-{hashlib.sha256(blob).hexdigest()[:12]}"

        return ShadowSplitPlan(
            signal_id=signal_id,
            primary_pair=pair,
            direction=proposal.direction,
            total_units=total_units,
            legs=[primary] + legs,
            created_at=decision.decided_at,
        )
