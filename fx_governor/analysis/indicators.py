"""
Technical Indicators
====================

ATR, efficiency, rational-quadratic trend core 계산 함수.

모든 함수는 numpy 배열(오래된 -> 최신 순)을 받고 float 을 반환한다.
데이터가 부족하면 0 / 마지막 종가 같은 중립값을 반환하고 예외를 던지지 않는다.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    """True Range (len = n - 1, 첫 bar 는 prev close 없음)"""
    if len(close) < 2:
        return np.zeros(0)
    prev_close = close[:-1]
    h, l = high[1:], low[1:]
    return np.maximum.reduce([h - l, np.abs(h - prev_close), np.abs(l - prev_close)])


def atr(high: np.ndarray, low: np.ndarray, close: np.ndarray, period: int = 14) -> float:
    """최근 period 개 TR 의 단순평균. period + 1 개 미만이면 0."""
    if len(close) < period + 1:
        return 0.0
    tr = true_range(high[-(period + 1):], low[-(period + 1):], close[-(period + 1):])
    return float(tr.mean())


def average_true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> float:
    """윈도우 전체 TR 평균 (volatility phase 의 기준선)"""
    tr = true_range(high, low, close)
    return float(tr.mean()) if len(tr) else 0.0


def efficiency(high: np.ndarray, low: np.ndarray, close: np.ndarray, lookback: int = 3) -> float:
    """
    Net move / path noise over `lookback` bars, in [0, 1].

    path noise = sum of true ranges, so a straight move scores close to 1.
    """
    if len(close) < lookback + 1:
        return 0.0
    net_move = abs(close[-1] - close[-1 - lookback])
    noise = true_range(high[-(lookback + 1):], low[-(lookback + 1):], close[-(lookback + 1):]).sum()
    return float(net_move / noise) if noise > 0 else 0.0


def rational_quadratic_kernel(close: np.ndarray, lookback: int, relative_weight: float = 1.0) -> float:
    """Rational quadratic 가중 평균 (최신 bar 가중치 최대)"""
    if len(close) == 0:
        return 0.0
    if len(close) < lookback:
        return float(close[-1])
    i = np.arange(lookback, dtype=float)
    weights = np.power(1 + (i * i) / (2 * relative_weight * lookback * lookback), -relative_weight)
    recent = close[::-1][:lookback]
    return float((recent * weights).sum() / weights.sum())


@dataclass(frozen=True)
class TrendCore:
    fast: float
    slow: float

    @property
    def spread(self) -> float:
        return abs(self.fast - self.slow)

    @property
    def bias(self) -> str:
        return 'bullish' if self.fast > self.slow else 'bearish'


def trend_core(
    close: np.ndarray,
    fast_lookback: int = 8,
    slow_lookback: int = 21,
    fast_weight: float = 0.5,
    slow_weight: float = 1.5,
) -> TrendCore:
    return TrendCore(
        fast=rational_quadratic_kernel(close, fast_lookback, fast_weight),
        slow=rational_quadratic_kernel(close, slow_lookback, slow_weight),
    )
