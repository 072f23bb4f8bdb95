"""
Ticker Resolver
===============

FX 심볼 표기 변환 + 지원 종목 조회.

세 가지 표기:
- display:   "EUR/USD"  (UI, 리포트)
- canonical: "EUR_USD"  (엔진 내부 키, 레코드)
- raw:       "EURUSD"   (피드 / 브로커 심볼)

사용법:
    resolver = TickerResolver()
    inst = resolver.resolve("EURUSD")
    inst.canonical   # 'EUR_USD'
    inst.pip_size    # 0.0001

resolve()는 순수 조회: 형식이 틀리면 ProposalValidationError,
형식은 맞지만 지원하지 않는 종목이면 None.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from fx_governor.errors import ProposalValidationError


SUPPORTED_PAIRS: List[str] = [
    'EUR_USD', 'GBP_USD', 'USD_JPY', 'AUD_USD', 'USD_CAD',
    'USD_CHF', 'EUR_JPY', 'GBP_JPY', 'NZD_USD', 'EUR_GBP',
    'AUD_JPY', 'EUR_AUD', 'EUR_CHF', 'CAD_JPY', 'GBP_AUD',
    'GBP_CHF', 'AUD_CAD', 'AUD_NZD', 'NZD_JPY', 'CHF_JPY',
]

# 백테스트 기본 유니버스 (8 majors)
MAJOR_PAIRS: List[str] = [
    'EUR_USD', 'GBP_USD', 'USD_JPY', 'AUD_USD',
    'USD_CAD', 'EUR_GBP', 'EUR_JPY', 'GBP_JPY',
]

# 합성 캔들 시작가
REFERENCE_PRICES: Dict[str, float] = {
    'EUR_USD': 1.0850, 'GBP_USD': 1.2650, 'USD_JPY': 149.50,
    'AUD_USD': 0.6550, 'USD_CAD': 1.3650, 'EUR_GBP': 0.8580,
    'EUR_JPY': 162.20, 'GBP_JPY': 189.10, 'NZD_USD': 0.6050,
    'AUD_JPY': 97.80, 'USD_CHF': 0.8780, 'EUR_CHF': 0.9530,
    'EUR_AUD': 1.6560, 'GBP_AUD': 1.9310, 'AUD_NZD': 1.0820,
    'CAD_JPY': 109.50, 'GBP_CHF': 1.1100, 'AUD_CAD': 0.8940,
    'NZD_JPY': 90.40, 'CHF_JPY': 170.30,
}

_PAIR_RE = re.compile(r'^([A-Z]{3})[_/]?([A-Z]{3})$')


@dataclass(frozen=True)
class Instrument:
    """Resolved tradable instrument."""
    canonical: str
    display: str
    raw: str
    base: str
    quote: str
    pip_size: float
    reference_price: float
    is_major: bool = False


def split_pair(pair: str) -> Tuple[str, str]:
    """'EUR_USD' | 'EUR/USD' | 'EURUSD' -> ('EUR', 'USD')"""
    if not isinstance(pair, str):
        raise ProposalValidationError(f"pair must be a string, got {type(pair).__name__}")
    match = _PAIR_RE.match(pair.strip().upper())
    if not match:
        raise ProposalValidationError(f"Unknown pair format: '{pair}'")
    return match.group(1), match.group(2)


def is_valid_pair_format(pair: str) -> bool:
    try:
        split_pair(pair)
    except ProposalValidationError:
        return False
    return True


def to_display(pair: str) -> str:
    base, quote = split_pair(pair)
    return f"{base}/{quote}"


def to_canonical(pair: str) -> str:
    base, quote = split_pair(pair)
    return f"{base}_{quote}"


def to_raw(pair: str) -> str:
    base, quote = split_pair(pair)
    return f"{base}{quote}"


def pip_size(pair: str) -> float:
    """JPY 크로스 = 0.01, 그 외 = 0.0001"""
    _, quote = split_pair(pair)
    return 0.01 if quote == 'JPY' else 0.0001


def price_to_pips(pair: str, price_diff: float) -> float:
    return price_diff / pip_size(pair)


class TickerResolver:
    """Stateless lookup over a fixed instrument universe."""

    def __init__(self, supported: Optional[Iterable[str]] = None):
        pairs = SUPPORTED_PAIRS if supported is None else supported
        self._instruments: Dict[str, Instrument] = {}
        for pair in pairs:
            canonical = to_canonical(pair)
            base, quote = split_pair(canonical)
            self._instruments[canonical] = Instrument(
                canonical=canonical,
                display=f"{base}/{quote}",
                raw=f"{base}{quote}",
                base=base,
                quote=quote,
                pip_size=pip_size(canonical),
                reference_price=REFERENCE_PRICES.get(canonical, 1.0),
                is_major=canonical in MAJOR_PAIRS,
            )

    def resolve(self, pair: str) -> Optional[Instrument]:
        return self._instruments.get(to_canonical(pair))

    @property
    def supported_pairs(self) -> List[str]:
        return list(self._instruments)

    def __contains__(self, pair: str) -> bool:
        return is_valid_pair_format(pair) and to_canonical(pair) in self._instruments
