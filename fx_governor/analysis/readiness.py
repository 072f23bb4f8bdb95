"""
Readiness Checker
=================

결정 전 사전 점검: 종목이 해석되는지, 필요한 TF 분석이 모두 가능한지.

- ticker 미해석       -> ticker_found=False, reason "ticker not resolved"
- TF 분석 불가        -> analysis_available=False, reason 에 실패 TF 명시
                         e.g. "insufficient candles: 4h (3 < 22)"
- 부작용 없음 (반복 호출 안전)

사용법:
    checker = ReadinessChecker(resolver, analyzer)
    report = checker.check_readiness(["EUR_USD", "XAU_USD"], ["15m", "1h", "4h"])
    report.summary.blocked_count
"""
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from fx_governor.analysis.multi_tf import MultiTimeframeAnalysis, MultiTimeframeAnalyzer
from fx_governor.errors import ProposalValidationError
from fx_governor.market.tickers import TickerResolver

logger = logging.getLogger(__name__)

REQUIRED_TIMEFRAMES: Tuple[str, ...] = ('15m', '1h', '4h')
TICKER_NOT_RESOLVED = "ticker not resolved"


@dataclass(frozen=True)
class ReadinessResult:
    pair_display: str
    ticker_found: bool
    analysis_available: bool
    blocking_reason: Optional[str] = None
    pair_canonical: Optional[str] = None
    pair_raw: Optional[str] = None
    candles_found: Dict[str, bool] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.ticker_found and self.analysis_available

    def to_dict(self) -> dict:
        return {
            'pair_display': self.pair_display,
            'pair_canonical': self.pair_canonical,
            'pair_raw': self.pair_raw,
            'ticker_found': self.ticker_found,
            'analysis_available': self.analysis_available,
            'candles_found': dict(self.candles_found),
            'blocking_reason': self.blocking_reason,
        }


@dataclass(frozen=True)
class ReadinessSummary:
    ok_count: int
    blocked_count: int
    top_blocking_reasons: List[Tuple[str, int]]


@dataclass(frozen=True)
class ReadinessReport:
    results: List[ReadinessResult]
    summary: ReadinessSummary
    checked_at: Optional[datetime] = None

    def blocked(self) -> List[ReadinessResult]:
        return [r for r in self.results if not r.ready]


def _reason_key(reason: str) -> str:
    # "insufficient candles: 4h (3 < 22)" -> "insufficient candles: 4h"
    return reason.split(' (')[0]


def summarize_readiness(results: Sequence[ReadinessResult], top_n: int = 5) -> ReadinessSummary:
    ok = sum(1 for r in results if r.ready)
    reasons = Counter(_reason_key(r.blocking_reason) for r in results if r.blocking_reason)
    return ReadinessSummary(
        ok_count=ok,
        blocked_count=len(results) - ok,
        top_blocking_reasons=reasons.most_common(top_n),
    )


class ReadinessChecker:
    """Resolver + analyzer 위의 side-effect-free 점검기"""

    def __init__(self, resolver: TickerResolver, analyzer: MultiTimeframeAnalyzer):
        self.resolver = resolver
        self.analyzer = analyzer

    def assess(
        self,
        pair: str,
        timeframes: Optional[Sequence[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> Tuple[ReadinessResult, Optional[MultiTimeframeAnalysis]]:
        """
        단일 pair 점검 + (가능하면) 분석 결과 반환.

        DecisionEngine 은 이 분석을 그대로 재사용한다 (분석 1회).
        형식이 잘못된 pair 는 ticker 미해석으로 취급한다.
        """
        try:
            instrument = self.resolver.resolve(pair)
        except ProposalValidationError:
            instrument = None

        if instrument is None:
            return ReadinessResult(
                pair_display=str(pair),
                ticker_found=False,
                analysis_available=False,
                blocking_reason=TICKER_NOT_RESOLVED,
            ), None

        analysis = self.analyzer.analyze(instrument, timeframes or REQUIRED_TIMEFRAMES, as_of=as_of)
        candles_found = {tf: a.candles > 0 for tf, a in analysis.analyses.items()}

        reason = None
        if not analysis.available:
            failing = [
                f"{tf} ({analysis.analyses[tf].reason})"
                for tf in analysis.unavailable_timeframes
            ]
            reason = "insufficient candles: " + ", ".join(failing)

        return ReadinessResult(
            pair_display=instrument.display,
            pair_canonical=instrument.canonical,
            pair_raw=instrument.raw,
            ticker_found=True,
            analysis_available=analysis.available,
            candles_found=candles_found,
            blocking_reason=reason,
        ), analysis

    def check_readiness(
        self,
        pairs: Sequence[str],
        timeframes: Optional[Sequence[str]] = None,
        as_of: Optional[datetime] = None,
    ) -> ReadinessReport:
        results = [self.assess(pair, timeframes, as_of)[0] for pair in pairs]
        summary = summarize_readiness(results)
        if summary.blocked_count:
            logger.warning(
                f"[Readiness] {summary.blocked_count}/{len(results)} pairs blocked: "
                f"{summary.top_blocking_reasons}"
            )
        return ReadinessReport(results=results, summary=summary, checked_at=as_of)
