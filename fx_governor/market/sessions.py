"""
Liquidity Sessions
==================

UTC hour -> FX liquidity session, per-session tables and expected spread,
shared by the governance context and the backtest spread/slippage model.

    rollover     21:00 - 01:00
    asian        01:00 - 07:00
    london-open  07:00 - 12:00
    ny-overlap   12:00 - 17:00
    late-ny      17:00 - 21:00
"""
from datetime import datetime
from typing import Dict

import pandas as pd

SESSIONS = ('asian', 'london-open', 'ny-overlap', 'late-ny', 'rollover')

# 0 ~ 100, 세션별 진입 공격성
SESSION_AGGRESSIVENESS: Dict[str, float] = {
    'asian': 35,
    'london-open': 88,
    'ny-overlap': 78,
    'late-ny': 22,
    'rollover': 10,
}

# 0 ~ 100, 높을수록 스프레드 안정
SESSION_SPREAD_STABILITY: Dict[str, float] = {
    'london-open': 85,
    'ny-overlap': 80,
    'asian': 60,
    'late-ny': 50,
    'rollover': 25,
}

# 최근 30분 내 최대 거래 수
OVERTRADING_LIMITS: Dict[str, int] = {
    'london-open': 12,
    'ny-overlap': 10,
    'asian': 6,
    'late-ny': 4,
    'rollover': 2,
}


def detect_session(hour: int) -> str:
    """UTC hour (0-23) -> session label"""
    if hour >= 21 or hour < 1:
        return 'rollover'
    if hour < 7:
        return 'asian'
    if hour < 12:
        return 'london-open'
    if hour < 17:
        return 'ny-overlap'
    return 'late-ny'


def session_at(ts: datetime) -> str:
    stamp = pd.Timestamp(ts)
    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert('UTC')
    return detect_session(stamp.hour)


# ============================================================
# Expected spread (pips)
# ============================================================

PAIR_SPREAD_BASELINES: Dict[str, float] = {
    'EUR_USD': 0.6, 'GBP_USD': 0.9, 'USD_JPY': 0.7, 'AUD_USD': 0.8,
    'USD_CAD': 1.0, 'EUR_JPY': 1.1, 'GBP_JPY': 1.5, 'EUR_GBP': 0.8,
    'NZD_USD': 1.2, 'AUD_JPY': 1.3, 'USD_CHF': 1.0, 'EUR_CHF': 1.2,
    'EUR_AUD': 1.6, 'GBP_AUD': 2.0, 'AUD_NZD': 1.8,
}
DEFAULT_SPREAD_BASELINE = 1.5

SESSION_SPREAD_MULTIPLIERS: Dict[str, float] = {
    'london-open': 0.85,
    'ny-overlap': 0.90,
    'asian': 1.30,
    'late-ny': 1.20,
    'rollover': 1.80,
}


def spread_baseline(pair: str) -> float:
    return PAIR_SPREAD_BASELINES.get(pair, DEFAULT_SPREAD_BASELINE)


def volatility_spread_multiplier(atr_ratio: float) -> float:
    """ATR / ATR avg -> spread 확대 배수"""
    if atr_ratio < 0.7:
        return 0.90
    if atr_ratio < 1.3:
        return 1.00
    if atr_ratio < 1.8:
        return 1.15
    return 1.35


def expected_spread_pips(pair: str, session: str, atr_ratio: float = 1.0) -> float:
    """Baseline x session x volatility (jitter 없음)"""
    return (
        spread_baseline(pair)
        * SESSION_SPREAD_MULTIPLIERS.get(session, 1.0)
        * volatility_spread_multiplier(atr_ratio)
    )
