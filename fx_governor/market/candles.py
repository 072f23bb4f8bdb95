"""
Candle Sources
==============

엔진이 소비하는 OHLCV 데이터 경계 (ingestion 파이프라인은 외부).

캔들 = pandas DataFrame
    index:   DatetimeIndex (bar open time, naive UTC)
    columns: open, high, low, close, volume

핵심 원칙:
- get_candles(..., as_of)는 as_of 시점에 *마감된* bar만 반환 (index + tf <= as_of)
  -> 백테스트 replay 에서 look-ahead 불가
- 상위 TF는 base(15m) 프레임을 resample 해서 만든다 (한 번 계산 후 캐시)

사용법:
    source = FrameCandleSource({"EUR_USD": df_15m})
    df_1h = source.get_candles("EUR_USD", "1h", as_of=now, limit=100)

    # 데이터 피드가 없을 때: 결정적 합성 캔들
    source = SyntheticCandleSource(start, end, seed=42)
"""
import hashlib
import logging
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from fx_governor.market.tickers import (
    Instrument,
    REFERENCE_PRICES,
    pip_size,
    to_canonical,
)
from fx_governor.utils.timeframe import TimeframeSpec

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ['open', 'high', 'low', 'close', 'volume']

PairLike = Union[str, Instrument]


def to_utc_timestamp(ts) -> pd.Timestamp:
    """Any datetime-like -> naive UTC pd.Timestamp."""
    stamp = pd.Timestamp(ts)
    if stamp.tzinfo is not None:
        stamp = stamp.tz_convert('UTC').tz_localize(None)
    return stamp


def empty_candles() -> pd.DataFrame:
    return pd.DataFrame(
        {col: pd.Series(dtype=float) for col in OHLCV_COLUMNS},
        index=pd.DatetimeIndex([], name='timestamp'),
    )


def normalize_candles(df: pd.DataFrame) -> pd.DataFrame:
    """
    Coerce an OHLCV frame to the engine layout.

    - 'timestamp' / 'ts' column -> index
    - tz-aware index -> naive UTC
    - sorted, duplicate timestamps dropped (keep last)
    - missing volume -> 0
    """
    out = df.copy()
    out.columns = [str(c).lower() for c in out.columns]
    for col in ('timestamp', 'ts', 'time'):
        if col in out.columns:
            out = out.set_index(col)
            break
    out.index = pd.DatetimeIndex(out.index)
    if out.index.tz is not None:
        out.index = out.index.tz_convert('UTC').tz_localize(None)
    out.index.name = 'timestamp'

    missing = [c for c in ('open', 'high', 'low', 'close') if c not in out.columns]
    if missing:
        raise ValueError(f"Candle frame missing columns: {missing}")
    if 'volume' not in out.columns:
        out['volume'] = 0.0

    out = out[OHLCV_COLUMNS].astype(float)
    out = out[~out.index.duplicated(keep='last')].sort_index()
    return out


def aggregate_candles(df: pd.DataFrame, timeframe: str) -> pd.DataFrame:
    """Resample lower-TF candles to `timeframe` (bins labelled by open time)."""
    if df.empty:
        return empty_candles()
    spec = TimeframeSpec.from_string(timeframe)
    agg = df.resample(spec.delta, label='left', closed='left').agg({
        'open': 'first',
        'high': 'max',
        'low': 'min',
        'close': 'last',
        'volume': 'sum',
    })
    # 주말 / 데이터 공백 bin 제거
    agg = agg.dropna(subset=['open'])
    agg.index.name = 'timestamp'
    return agg


def _pair_seed(pair: str, seed: int, start: pd.Timestamp) -> int:
    blob = f"{pair}|{seed}|{start.isoformat()}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(blob).digest()[:8], "big")


def generate_synthetic_candles(
    pair: str,
    start: datetime,
    end: datetime,
    timeframe: str = '15m',
    seed: int = 0,
) -> pd.DataFrame:
    """
    Deterministic random-walk candles (weekends skipped).

    Same (pair, start, end, timeframe, seed) -> identical frame.

    - drift      = (r - 0.48) * atr * 0.3
    - volatility = atr * (0.3 + r * 0.7)
    - atr        = 15 pips (JPY) / 8 pips
    """
    canonical = to_canonical(pair)
    spec = TimeframeSpec.from_string(timeframe)
    start_ts = to_utc_timestamp(start).floor(spec.delta)
    end_ts = to_utc_timestamp(end)

    index = pd.date_range(start_ts, end_ts, freq=spec.delta, inclusive='left')
    index = index[index.dayofweek < 5]
    if len(index) == 0:
        return empty_candles()

    pip = pip_size(canonical)
    atr_price = (15 if canonical.endswith('JPY') else 8) * pip
    rng = np.random.default_rng(_pair_seed(canonical, seed, start_ts))
    n = len(index)
    draws = rng.random((n, 5))

    drift = (draws[:, 0] - 0.48) * atr_price * 0.3
    volatility = atr_price * (0.3 + draws[:, 1] * 0.7)

    close = REFERENCE_PRICES.get(canonical, 1.0) + np.cumsum(drift)
    open_ = np.concatenate(([REFERENCE_PRICES.get(canonical, 1.0)], close[:-1]))
    high = np.maximum(open_, close) + draws[:, 2] * volatility * 0.5
    low = np.minimum(open_, close) - draws[:, 3] * volatility * 0.5
    volume = np.round(500 + draws[:, 4] * 2000)

    return pd.DataFrame(
        {'open': open_, 'high': high, 'low': low, 'close': close, 'volume': volume},
        index=pd.DatetimeIndex(index, name='timestamp'),
    )


# ============================================================
# Sources
# ============================================================

class CandleSource:
    """
    Interface: (instrument, timeframe, as_of, limit) -> closed candles.

    Implementations must never return a bar whose close time is after as_of.
    """

    def get_candles(
        self,
        instrument: PairLike,
        timeframe: str,
        as_of: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        raise NotImplementedError


class FrameCandleSource(CandleSource):
    """In-memory source over per-pair base-timeframe frames."""

    def __init__(self, frames: Dict[str, pd.DataFrame], base_timeframe: str = '15m'):
        self.base_timeframe = TimeframeSpec.from_string(base_timeframe).name
        self._frames: Dict[Tuple[str, str], pd.DataFrame] = {}
        for pair, df in frames.items():
            self._frames[(to_canonical(pair), self.base_timeframe)] = normalize_candles(df)

    @property
    def pairs(self) -> Iterable[str]:
        return sorted({pair for pair, _ in self._frames})

    def frame(self, pair: str, timeframe: str) -> pd.DataFrame:
        """Full frame for (pair, timeframe); higher TFs aggregated once and cached."""
        canonical = to_canonical(pair)
        spec = TimeframeSpec.from_string(timeframe)
        key = (canonical, spec.name)
        if key in self._frames:
            return self._frames[key]

        base = self._frames.get((canonical, self.base_timeframe))
        base_minutes = TimeframeSpec.from_string(self.base_timeframe).minutes
        if base is None or spec.minutes < base_minutes:
            return empty_candles()

        aggregated = aggregate_candles(base, spec.name)
        self._frames[key] = aggregated
        return aggregated

    def get_candles(
        self,
        instrument: PairLike,
        timeframe: str,
        as_of: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        pair = instrument.canonical if isinstance(instrument, Instrument) else instrument
        spec = TimeframeSpec.from_string(timeframe)
        frame = self.frame(pair, spec.name)

        hi = len(frame)
        if as_of is not None:
            # index + tf <= as_of  <=>  index <= as_of - tf
            cutoff = to_utc_timestamp(as_of) - spec.delta
            hi = int(frame.index.searchsorted(cutoff, side='right'))
        lo = max(0, hi - limit) if limit else 0
        return frame.iloc[lo:hi]


class SyntheticCandleSource(FrameCandleSource):
    """FrameCandleSource backed by generate_synthetic_candles()."""

    def __init__(
        self,
        start: datetime,
        end: datetime,
        pairs: Optional[Iterable[str]] = None,
        seed: int = 0,
        base_timeframe: str = '15m',
    ):
        self.start = start
        self.end = end
        self.seed = seed
        super().__init__({}, base_timeframe=base_timeframe)
        for pair in (pairs or []):
            self._ensure(pair)

    def _ensure(self, pair: str) -> None:
        key = (to_canonical(pair), self.base_timeframe)
        if key not in self._frames:
            logger.debug(f"[Candles] synthesizing {key[0]} {self.base_timeframe}")
            self._frames[key] = generate_synthetic_candles(
                key[0], self.start, self.end, self.base_timeframe, self.seed
            )

    def frame(self, pair: str, timeframe: str) -> pd.DataFrame:
        self._ensure(pair)
        return super().frame(pair, timeframe)
