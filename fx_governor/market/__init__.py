"""
Market Module
=============

Ticker resolution + candle sources (the engine's market-data boundary).
"""
from .tickers import (
    Instrument,
    TickerResolver,
    SUPPORTED_PAIRS,
    MAJOR_PAIRS,
    split_pair,
    is_valid_pair_format,
    to_display,
    to_canonical,
    to_raw,
    pip_size,
    price_to_pips,
)
from .candles import (
    CandleSource,
    FrameCandleSource,
    SyntheticCandleSource,
    aggregate_candles,
    generate_synthetic_candles,
    normalize_candles,
    to_utc_timestamp,
)
from .sessions import (
    SESSIONS,
    detect_session,
    session_at,
    expected_spread_pips,
)

__all__ = [
    'Instrument',
    'TickerResolver',
    'SUPPORTED_PAIRS',
    'MAJOR_PAIRS',
    'split_pair',
    'is_valid_pair_format',
    'to_display',
    'to_canonical',
    'to_raw',
    'pip_size',
    'price_to_pips',
    'CandleSource',
    'FrameCandleSource',
    'SyntheticCandleSource',
    'aggregate_candles',
    'generate_synthetic_candles',
    'normalize_candles',
    'to_utc_timestamp',
    'SESSIONS',
    'detect_session',
    'session_at',
    'expected_spread_pips',
]
