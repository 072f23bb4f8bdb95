"""
Spread & Slippage Model
=======================

백테스트 체결 현실성: 세션/변동성 기반 spread + slippage, 결정적 jitter.

- spread   = baseline × session × volatility × jitter(0.92 ~ 1.08) × spread_multiplier
- slippage = max(0, baseline×0.15 + max(0, (atr_ratio-1)×0.1) + session adj) × jitter(0.8 ~ 1.2)
             × slippage_multiplier
- long  체결 = mid + spread/2 + slippage
- short 체결 = mid - spread/2 - slippage

jitter 는 (seed, bar_key) 로 시드한 numpy Generator -> 같은 입력이면 같은 체결가.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict

import numpy as np

from fx_governor.market.sessions import (
    SESSION_SPREAD_MULTIPLIERS,
    detect_session,
    spread_baseline,
    volatility_spread_multiplier,
)
from fx_governor.market.tickers import pip_size, to_canonical

SESSION_SLIPPAGE_ADJUSTMENT: Dict[str, float] = {
    'london-open': -0.02,
    'ny-overlap': 0.0,
    'asian': 0.05,
    'late-ny': 0.08,
    'rollover': 0.15,
}


@dataclass(frozen=True)
class FillResult:
    fill_price: float
    spread_pips: float
    slippage_pips: float
    session: str

    @property
    def total_friction_pips(self) -> float:
        return self.spread_pips + self.slippage_pips


@dataclass(frozen=True)
class FrictionModel:
    """백테스트 spread/slippage 파라미터"""
    spread_multiplier: float = 1.0
    slippage_multiplier: float = 1.0
    seed: int = 0

    def __post_init__(self):
        if self.spread_multiplier < 0 or self.slippage_multiplier < 0:
            raise ValueError("friction multipliers must be >= 0")

    def _jitter(self, bar_key: int) -> np.ndarray:
        rng = np.random.default_rng([int(self.seed) & 0xFFFFFFFF, int(bar_key) & 0xFFFFFFFF])
        return rng.random(2)

    def spread_pips(self, pair: str, hour: int, atr_ratio: float, jitter: float) -> float:
        session = detect_session(hour)
        return (
            spread_baseline(to_canonical(pair))
            * SESSION_SPREAD_MULTIPLIERS[session]
            * volatility_spread_multiplier(atr_ratio)
            * (0.92 + jitter * 0.16)
            * self.spread_multiplier
        )

    def slippage_pips(self, pair: str, hour: int, atr_ratio: float, jitter: float) -> float:
        session = detect_session(hour)
        base = spread_baseline(to_canonical(pair)) * 0.15
        vol_adj = max(0.0, (atr_ratio - 1) * 0.1)
        raw = (base + vol_adj + SESSION_SLIPPAGE_ADJUSTMENT[session]) * (0.8 + jitter * 0.4)
        return max(0.0, raw) * self.slippage_multiplier

    def fill_price(
        self,
        direction: str,
        mid: float,
        pair: str,
        ts: datetime,
        atr: float,
        atr_avg: float,
        bar_key: int,
    ) -> FillResult:
        """Entry fill for `direction` at mid price `mid`."""
        atr_ratio = atr / atr_avg if atr_avg > 0 else 1.0
        j_spread, j_slip = self._jitter(bar_key)
        spread = self.spread_pips(pair, ts.hour, atr_ratio, j_spread)
        slippage = self.slippage_pips(pair, ts.hour, atr_ratio, j_slip)

        pip = pip_size(pair)
        offset = (spread / 2 + slippage) * pip
        price = mid + offset if direction == 'long' else mid - offset
        return FillResult(
            fill_price=price,
            spread_pips=spread,
            slippage_pips=slippage,
            session=detect_session(ts.hour),
        )
