"""
Analysis Module
===============

Multi-timeframe technical analysis + pre-decision readiness checks.
"""
from .multi_tf import (
    AnalyzerConfig,
    TimeframeAnalysis,
    MultiTimeframeAnalysis,
    MultiTimeframeAnalyzer,
    analyze_frame,
    aggregate_scores,
)
from .readiness import (
    REQUIRED_TIMEFRAMES,
    ReadinessChecker,
    ReadinessReport,
    ReadinessResult,
    ReadinessSummary,
    summarize_readiness,
)

__all__ = [
    'AnalyzerConfig',
    'TimeframeAnalysis',
    'MultiTimeframeAnalysis',
    'MultiTimeframeAnalyzer',
    'analyze_frame',
    'aggregate_scores',
    'REQUIRED_TIMEFRAMES',
    'ReadinessChecker',
    'ReadinessReport',
    'ReadinessResult',
    'ReadinessSummary',
    'summarize_readiness',
]
