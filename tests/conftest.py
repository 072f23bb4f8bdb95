# -*- coding: utf-8 -*-
"""
Shared fixtures
===============

rising_candles(): 15m 캔들, 매 bar +2 pips (open = 직전 close)
    high = close + 1 pip, low = open - 1 pip  ->  TR = ATR = 4 pips, efficiency = 0.5
"""
from datetime import datetime

import numpy as np
import pandas as pd
import pytest

from fx_governor.analysis import MultiTimeframeAnalyzer, ReadinessChecker
from fx_governor.governance import DecisionEngine, DynamicGateRegistry
from fx_governor.market import FrameCandleSource, TickerResolver


def rising_candles(
    start: str = "2024-01-01 00:00",
    bars: int = 600,
    base: float = 1.0850,
    step: float = 0.0002,
    pip: float = 0.0001,
) -> pd.DataFrame:
    index = pd.date_range(start, periods=bars, freq="15min", name="timestamp")
    open_ = base + step * np.arange(bars)
    close = open_ + step
    return pd.DataFrame(
        {
            "open": open_,
            "high": close + pip,
            "low": open_ - pip,
            "close": close,
            "volume": np.full(bars, 1000.0),
        },
        index=index,
    )


# 2024-01-01 = 월요일. 10:00 UTC = london-open
DECISION_TIME = datetime(2024, 1, 6, 10, 0)


@pytest.fixture
def rising_source():
    return FrameCandleSource({"EUR_USD": rising_candles()})


@pytest.fixture
def registry():
    return DynamicGateRegistry()


@pytest.fixture
def engine(rising_source, registry):
    analyzer = MultiTimeframeAnalyzer(rising_source)
    return DecisionEngine(ReadinessChecker(TickerResolver(), analyzer), registry=registry)
