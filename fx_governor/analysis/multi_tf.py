"""
Multi-Timeframe Analyzer
========================

TF 별 ATR / efficiency / trend core -> directional score,
TF 가중합 -> aggregated score.

핵심 원칙:
- directional_score = ±confidence × efficiency  (in [-1, 1])
- aggregated_score = Σ w_tf · score_tf / Σ w_tf  (available TF 만, 항상 finite)
- 캔들 0개 / 부족 / ATR 0 -> available=False sentinel (예외 없음)
- 결과는 frozen (결정 1회 또는 백테스트 step 1회 용)

Usage:
```python
from fx_governor.analysis import MultiTimeframeAnalyzer

analyzer = MultiTimeframeAnalyzer(source)
mtf = analyzer.analyze(instrument, ["15m", "1h", "4h"], as_of=now)

mtf.available              # 모든 TF 가 계산됐는지
mtf.aggregated_score       # -1.0 ~ 1.0
mtf.analyses["4h"].atr     # > 0 when available
```
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from fx_governor.analysis import indicators
from fx_governor.market.candles import CandleSource
from fx_governor.market.tickers import Instrument
from fx_governor.utils.timeframe import TIMEFRAME_WEIGHTS, sort_timeframes

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class AnalyzerConfig:
    """Multi-TF analyzer 설정"""
    timeframes: Tuple[str, ...] = ('15m', '1h', '4h')  # 기본 required TF
    history_bars: int = 100       # TF 당 분석 윈도우
    atr_period: int = 14
    efficiency_lookback: int = 3

    # Trend cores (rational quadratic kernel)
    fast_lookback: int = 8
    fast_weight: float = 0.5
    slow_lookback: int = 21
    slow_weight: float = 1.5

    # HTF = 추세 확인 (무겁게), LTF = 진입 타이밍 (가볍게)
    weights: Dict[str, float] = field(default_factory=lambda: dict(TIMEFRAME_WEIGHTS))

    @property
    def min_candles(self) -> int:
        return max(self.atr_period + 1, self.slow_lookback + 1, self.efficiency_lookback + 1)


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class TimeframeAnalysis:
    """단일 TF 분석 결과"""
    timeframe: str
    available: bool
    candles: int = 0
    atr: float = 0.0              # > 0 when available
    atr_avg: float = 0.0
    efficiency: float = 0.0       # 0.0 ~ 1.0
    confidence: float = 0.0       # 0.0 ~ 1.0
    directional_score: float = 0.0  # -1.0 ~ 1.0
    bias: Optional[str] = None    # "bullish" | "bearish"
    last_close: Optional[float] = None
    reason: Optional[str] = None  # 사용 불가 사유

    @classmethod
    def unavailable(cls, timeframe: str, candles: int, reason: str) -> 'TimeframeAnalysis':
        return cls(timeframe=timeframe, available=False, candles=candles, reason=reason)

    def to_dict(self) -> dict:
        return {
            'timeframe': self.timeframe,
            'available': self.available,
            'candles': self.candles,
            'atr': self.atr,
            'atr_avg': self.atr_avg,
            'efficiency': self.efficiency,
            'confidence': self.confidence,
            'directional_score': self.directional_score,
            'bias': self.bias,
            'reason': self.reason,
        }


@dataclass(frozen=True)
class MultiTimeframeAnalysis:
    """한 종목의 multi-TF 분석 (frozen)"""
    pair: str
    timeframes: Tuple[str, ...]
    analyses: Dict[str, TimeframeAnalysis]
    aggregated_score: float
    as_of: Optional[datetime] = None

    @property
    def available(self) -> bool:
        return bool(self.timeframes) and all(a.available for a in self.analyses.values())

    @property
    def unavailable_timeframes(self) -> List[str]:
        return [tf for tf in self.timeframes if not self.analyses[tf].available]

    @property
    def dominant_bias(self) -> str:
        return 'bullish' if self.aggregated_score >= 0 else 'bearish'

    @property
    def alignment_level(self) -> str:
        """aligned | mixed | conflicting (bullish TF 비율 기준)"""
        biases = [a.bias for a in self.analyses.values() if a.available]
        if not biases:
            return 'conflicting'
        ratio = sum(1 for b in biases if b == 'bullish') / len(biases)
        if ratio >= 0.8 or ratio <= 0.2:
            return 'aligned'
        if 0.4 <= ratio <= 0.6:
            return 'conflicting'
        return 'mixed'

    def get(self, timeframe: str) -> Optional[TimeframeAnalysis]:
        return self.analyses.get(timeframe)

    def to_dict(self) -> dict:
        return {
            'pair': self.pair,
            'timeframes': list(self.timeframes),
            'available': self.available,
            'aggregated_score': self.aggregated_score,
            'dominant_bias': self.dominant_bias,
            'alignment_level': self.alignment_level,
            'analyses': {tf: a.to_dict() for tf, a in self.analyses.items()},
        }


# =============================================================================
# Core Functions
# =============================================================================

def analyze_frame(df: pd.DataFrame, timeframe: str, config: Optional[AnalyzerConfig] = None) -> TimeframeAnalysis:
    """
    OHLC frame -> TimeframeAnalysis.

    Args:
        df: closed candles, oldest first (마지막 history_bars 만 사용)
        timeframe: '15m', '1h', ...
        config: AnalyzerConfig

    Returns:
        TimeframeAnalysis (데이터 부족 시 available=False)
    """
    config = config or AnalyzerConfig()
    window = df.iloc[-config.history_bars:] if len(df) > config.history_bars else df
    n = len(window)

    if n == 0:
        return TimeframeAnalysis.unavailable(timeframe, 0, "no candles")
    if n < config.min_candles:
        return TimeframeAnalysis.unavailable(timeframe, n, f"{n} < {config.min_candles}")

    high = window['high'].to_numpy(dtype=float)
    low = window['low'].to_numpy(dtype=float)
    close = window['close'].to_numpy(dtype=float)
    if not (np.isfinite(high).all() and np.isfinite(low).all() and np.isfinite(close).all()):
        return TimeframeAnalysis.unavailable(timeframe, n, "non-finite candle data")

    atr_value = indicators.atr(high, low, close, config.atr_period)
    if atr_value <= 0:
        return TimeframeAnalysis.unavailable(timeframe, n, "zero ATR")

    eff = indicators.efficiency(high, low, close, config.efficiency_lookback)
    core = indicators.trend_core(
        close,
        fast_lookback=config.fast_lookback,
        slow_lookback=config.slow_lookback,
        fast_weight=config.fast_weight,
        slow_weight=config.slow_weight,
    )
    confidence = min(core.spread / atr_value, 1.0)
    direction = 1.0 if core.bias == 'bullish' else -1.0

    return TimeframeAnalysis(
        timeframe=timeframe,
        available=True,
        candles=n,
        atr=atr_value,
        atr_avg=indicators.average_true_range(high, low, close),
        efficiency=eff,
        confidence=confidence,
        directional_score=direction * confidence * eff,
        bias=core.bias,
        last_close=float(close[-1]),
    )


def aggregate_scores(analyses: Dict[str, TimeframeAnalysis], weights: Dict[str, float]) -> float:
    """
    가중 평균 directional score.

    available TF 가 없으면 0.0. 결과는 [-1, 1] 로 clip, NaN 없음.
    """
    total_score = 0.0
    total_weight = 0.0
    for tf, analysis in analyses.items():
        if not analysis.available:
            continue
        w = float(weights.get(tf, 1.0))
        total_score += analysis.directional_score * w
        total_weight += w

    if total_weight <= 0:
        return 0.0
    score = total_score / total_weight
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))


class MultiTimeframeAnalyzer:
    """CandleSource 위에서 TF 별 분석 + 집계"""

    def __init__(self, source: CandleSource, config: Optional[AnalyzerConfig] = None):
        self.source = source
        self.config = config or AnalyzerConfig()

    def analyze_timeframe(
        self,
        instrument: Instrument,
        timeframe: str,
        as_of: Optional[datetime] = None,
    ) -> TimeframeAnalysis:
        candles = self.source.get_candles(instrument, timeframe, as_of=as_of, limit=self.config.history_bars)
        return analyze_frame(candles, timeframe, self.config)

    def analyze(
        self,
        instrument: Instrument,
        timeframes: Optional[Sequence[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> MultiTimeframeAnalysis:
        ordered = tuple(sort_timeframes(timeframes or self.config.timeframes))
        analyses = {tf: self.analyze_timeframe(instrument, tf, as_of) for tf in ordered}

        missing = [f"{tf} ({a.reason})" for tf, a in analyses.items() if not a.available]
        if missing:
            logger.debug(f"[MTF] {instrument.canonical} unavailable: {', '.join(missing)}")

        return MultiTimeframeAnalysis(
            pair=instrument.canonical,
            timeframes=ordered,
            analyses=analyses,
            aggregated_score=aggregate_scores(analyses, self.config.weights),
            as_of=as_of,
        )
