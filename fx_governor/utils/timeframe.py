"""
Timeframes & Durations
======================

FX 캔들 주기 / 기간 표현 공용 모듈 (analysis, candles, backtest 에서 사용).

핵심 원칙:
- 주기 문자열은 '15m', '1h', '4h' 처럼 소문자 정규화
- 분석 순서는 항상 짧은 주기 -> 긴 주기
- 긴 주기일수록 aggregation weight 가 큼 (HTF = 추세 확인, LTF = 진입 타이밍)

사용법:
    from fx_governor.utils.timeframe import TimeframeSpec, Duration

    TimeframeSpec.from_string("4h").delta        # timedelta(hours=4)
    Duration.parse("10d").to_bars(TF_15M)        # 960
    get_higher_timeframe("1h")                   # '4h' (신호 fallback)
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Dict, Iterable, List, Literal, Optional


TIMEFRAME_MINUTES: Dict[str, int] = {
    '1m': 1,
    '5m': 5,
    '15m': 15,
    '30m': 30,
    '1h': 60,
    '4h': 240,
    '1d': 1440,
    '1w': 10080,
}

# short -> long
TF_HIERARCHY: List[str] = sorted(TIMEFRAME_MINUTES, key=TIMEFRAME_MINUTES.get)

TIMEFRAME_WEIGHTS: Dict[str, float] = {
    '1m': 0.5,
    '5m': 0.75,
    '15m': 1.0,
    '30m': 1.25,
    '1h': 1.5,
    '4h': 2.0,
    '1d': 3.0,
    '1w': 4.0,
}

UNIT_MINUTES: Dict[str, int] = {'m': 1, 'h': 60, 'd': 1440, 'w': 10080}

_DURATION_RE = re.compile(r'^(\d+(?:\.\d+)?)\s*([mhdw])$')


def _normalize(tf: str) -> str:
    return str(tf).strip().lower()


@dataclass(frozen=True)
class TimeframeSpec:
    """Bar 주기 (예: 15m = 15분)"""
    name: str
    minutes: int

    @classmethod
    def from_string(cls, tf: str) -> TimeframeSpec:
        """
        Raises:
            ValueError: 지원하지 않는 주기 ('7m', '2h' 등)
        """
        name = _normalize(tf)
        minutes = TIMEFRAME_MINUTES.get(name)
        if minutes is None:
            raise ValueError(f"Unsupported timeframe {tf!r} (expected one of {TF_HIERARCHY})")
        return cls(name=name, minutes=minutes)

    @property
    def delta(self) -> timedelta:
        return timedelta(minutes=self.minutes)

    @property
    def bars_per_day(self) -> float:
        return UNIT_MINUTES['d'] / self.minutes

    def __str__(self) -> str:
        return self.name


TF_15M = TimeframeSpec.from_string('15m')


@dataclass(frozen=True)
class Duration:
    """사람이 읽는 기간 ('90d', '12h', '1.5h')"""
    value: float
    unit: Literal['m', 'h', 'd', 'w']

    @classmethod
    def parse(cls, text: str) -> Duration:
        match = _DURATION_RE.match(_normalize(text))
        if match is None:
            raise ValueError(f"Invalid duration {text!r}: use <number><m|h|d|w>, e.g. '10d' or '12h'")
        return cls(value=float(match.group(1)), unit=match.group(2))

    @property
    def total_minutes(self) -> int:
        return int(self.value * UNIT_MINUTES[self.unit])

    @property
    def delta(self) -> timedelta:
        return timedelta(minutes=self.total_minutes)

    def to_bars(self, tf: TimeframeSpec) -> int:
        """최소 1 bar"""
        return max(1, round(self.total_minutes / tf.minutes))

    def __str__(self) -> str:
        value = int(self.value) if float(self.value).is_integer() else self.value
        return f"{value}{self.unit}"


def duration_to_bars(duration: str, timeframe: str) -> int:
    """duration_to_bars("1d", "15m") -> 96"""
    return Duration.parse(duration).to_bars(TimeframeSpec.from_string(timeframe))


def sort_timeframes(timeframes: Iterable[str]) -> List[str]:
    """정규화 + 중복 제거 + 짧은 주기 순"""
    specs = {TimeframeSpec.from_string(tf) for tf in timeframes}
    return [s.name for s in sorted(specs, key=lambda s: s.minutes)]


def get_higher_timeframe(tf: str) -> Optional[str]:
    """바로 위 주기. 1w 는 None"""
    name = TimeframeSpec.from_string(tf).name
    idx = TF_HIERARCHY.index(name)
    return TF_HIERARCHY[idx + 1] if idx + 1 < len(TF_HIERARCHY) else None
