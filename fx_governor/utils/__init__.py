"""
Utils Package
=============

Utility modules for fx_governor.
"""
from .timeframe import (
    TimeframeSpec,
    Duration,
    duration_to_bars,
    sort_timeframes,
    TIMEFRAME_MINUTES,
    TIMEFRAME_WEIGHTS,
    TF_HIERARCHY,
    get_higher_timeframe,
)

__all__ = [
    'TimeframeSpec',
    'Duration',
    'duration_to_bars',
    'sort_timeframes',
    'TIMEFRAME_MINUTES',
    'TIMEFRAME_WEIGHTS',
    'TF_HIERARCHY',
    'get_higher_timeframe',
]
