# -*- coding: utf-8 -*-
"""
Market Module Tests
===================

Tests for fx_governor/market (tickers, candles, sessions)
"""
from datetime import datetime

import pandas as pd
import pytest

from fx_governor.errors import ProposalValidationError
from fx_governor.market import (
    MAJOR_PAIRS,
    SUPPORTED_PAIRS,
    FrameCandleSource,
    SyntheticCandleSource,
    TickerResolver,
    aggregate_candles,
    detect_session,
    expected_spread_pips,
    generate_synthetic_candles,
    normalize_candles,
    pip_size,
    to_canonical,
    to_display,
    to_raw,
    to_utc_timestamp,
)

from conftest import rising_candles


class TestTickers:
    """표기 변환 + resolver 테스트"""

    @pytest.mark.parametrize("pair", ["EUR_USD", "EUR/USD", "EURUSD", "eur_usd"])
    def test_all_notations_resolve_to_same_instrument(self, pair):
        inst = TickerResolver().resolve(pair)
        assert inst.canonical == "EUR_USD"
        assert inst.display == "EUR/USD"
        assert inst.raw == "EURUSD"

    def test_conversions(self):
        assert to_display("GBPJPY") == "GBP/JPY"
        assert to_canonical("GBP/JPY") == "GBP_JPY"
        assert to_raw("GBP_JPY") == "GBPJPY"

    def test_jpy_pip_size(self):
        assert pip_size("USD_JPY") == 0.01
        assert pip_size("EUR_USD") == 0.0001

    def test_unsupported_pair_returns_none(self):
        assert TickerResolver().resolve("XAU_USD") is None

    def test_malformed_pair_raises(self):
        with pytest.raises(ProposalValidationError):
            TickerResolver().resolve("EURO-USD")

    def test_contains(self):
        resolver = TickerResolver()
        assert "EUR/USD" in resolver
        assert "XAU_USD" not in resolver
        assert "garbage" not in resolver

    def test_universe(self):
        assert len(SUPPORTED_PAIRS) == 20
        assert len(MAJOR_PAIRS) == 8
        assert set(MAJOR_PAIRS) <= set(SUPPORTED_PAIRS)

    def test_custom_universe(self):
        resolver = TickerResolver(["EURUSD"])
        assert resolver.supported_pairs == ["EUR_USD"]
        assert resolver.resolve("GBP_USD") is None


class TestCandleSource:
    """as_of 기준 마감 bar 만 반환 (no look-ahead)"""

    def test_only_closed_bars_returned(self):
        source = FrameCandleSource({"EUR_USD": rising_candles(bars=16)})
        # 00:45 bar 는 01:00 에 마감
        df = source.get_candles("EUR_USD", "15m", as_of=datetime(2024, 1, 1, 0, 59))
        assert len(df) == 3
        assert df.index[-1] == pd.Timestamp("2024-01-01 00:30")

        df = source.get_candles("EUR_USD", "15m", as_of=datetime(2024, 1, 1, 1, 0))
        assert len(df) == 4

    def test_higher_timeframe_waits_for_close(self):
        source = FrameCandleSource({"EUR_USD": rising_candles(bars=16)})
        assert len(source.get_candles("EUR_USD", "1h", as_of=datetime(2024, 1, 1, 0, 59))) == 0
        h1 = source.get_candles("EUR_USD", "1h", as_of=datetime(2024, 1, 1, 1, 0))
        assert len(h1) == 1
        assert h1["open"].iloc[0] == pytest.approx(1.0850)
        assert h1["close"].iloc[0] == pytest.approx(1.0850 + 4 * 0.0002)

    def test_limit_keeps_most_recent(self):
        source = FrameCandleSource({"EUR_USD": rising_candles(bars=100)})
        df = source.get_candles("EUR_USD", "15m", limit=10)
        assert len(df) == 10
        assert df.index[-1] == pd.Timestamp("2024-01-01 00:00") + pd.Timedelta(minutes=15 * 99)

    def test_unknown_pair_is_empty(self):
        source = FrameCandleSource({"EUR_USD": rising_candles(bars=10)})
        assert source.get_candles("GBP_USD", "1h").empty

    def test_tz_aware_as_of(self):
        source = FrameCandleSource({"EUR_USD": rising_candles(bars=16)})
        as_of = pd.Timestamp("2024-01-01 10:00", tz="Asia/Seoul")  # = 01:00 UTC
        assert len(source.get_candles("EUR_USD", "15m", as_of=as_of)) == 4

    def test_normalize_candles(self):
        df = rising_candles(bars=5).reset_index()
        df = df.drop(columns=["volume"])
        df["timestamp"] = df["timestamp"].dt.tz_localize("UTC")
        out = normalize_candles(pd.concat([df, df.iloc[[-1]]]))
        assert list(out.columns) == ["open", "high", "low", "close", "volume"]
        assert out.index.tz is None
        assert len(out) == 5
        assert (out["volume"] == 0).all()

    def test_normalize_missing_column_raises(self):
        with pytest.raises(ValueError):
            normalize_candles(rising_candles(bars=3).drop(columns=["close"]))

    def test_aggregate_candles(self):
        h1 = aggregate_candles(rising_candles(bars=8), "1h")
        assert len(h1) == 2
        assert h1["volume"].iloc[0] == 4000.0


class TestSyntheticCandles:
    """결정적 합성 캔들"""

    def test_deterministic(self):
        a = generate_synthetic_candles("EUR_USD", datetime(2024, 3, 4), datetime(2024, 3, 9), seed=7)
        b = generate_synthetic_candles("EUR_USD", datetime(2024, 3, 4), datetime(2024, 3, 9), seed=7)
        pd.testing.assert_frame_equal(a, b)

    def test_seed_changes_path(self):
        a = generate_synthetic_candles("EUR_USD", datetime(2024, 3, 4), datetime(2024, 3, 9), seed=1)
        b = generate_synthetic_candles("EUR_USD", datetime(2024, 3, 4), datetime(2024, 3, 9), seed=2)
        assert not a["close"].equals(b["close"])

    def test_weekends_skipped(self):
        df = generate_synthetic_candles("USD_JPY", datetime(2024, 3, 1), datetime(2024, 3, 12))
        assert (df.index.dayofweek < 5).all()

    def test_ohlc_consistent(self):
        df = generate_synthetic_candles("GBP_USD", datetime(2024, 3, 4), datetime(2024, 3, 6))
        assert (df["high"] >= df[["open", "close"]].max(axis=1)).all()
        assert (df["low"] <= df[["open", "close"]].min(axis=1)).all()

    def test_source_generates_lazily(self):
        source = SyntheticCandleSource(datetime(2024, 3, 4), datetime(2024, 3, 6), seed=3)
        assert len(source.get_candles("AUD_USD", "1h", as_of=datetime(2024, 3, 6))) == 48


class TestSessions:
    """UTC hour -> session"""

    @pytest.mark.parametrize("hour,session", [
        (0, "rollover"), (1, "asian"), (6, "asian"), (7, "london-open"),
        (11, "london-open"), (12, "ny-overlap"), (16, "ny-overlap"),
        (17, "late-ny"), (20, "late-ny"), (21, "rollover"), (23, "rollover"),
    ])
    def test_detect_session(self, hour, session):
        assert detect_session(hour) == session

    def test_expected_spread_widens_in_rollover(self):
        assert expected_spread_pips("EUR_USD", "rollover") > expected_spread_pips("EUR_USD", "london-open")

    def test_to_utc_timestamp_naive(self):
        ts = to_utc_timestamp(pd.Timestamp("2024-01-01 09:00", tz="Europe/London"))
        assert ts.tzinfo is None
        assert ts.hour == 9
