"""
Backtest Module
===============

DecisionEngine 을 과거 구간에서 재생 -> TradeRecord + BacktestSummary.
"""
from .friction import FillResult, FrictionModel
from .summary import (
    BacktestSummary,
    TradeRecord,
    format_report,
    print_report,
    summarize,
)
from .simulator import (
    BacktestConfig,
    BacktestProgress,
    BacktestRun,
    BacktestSimulator,
    default_backtest_config,
)

__all__ = [
    'FillResult',
    'FrictionModel',
    'BacktestSummary',
    'TradeRecord',
    'format_report',
    'print_report',
    'summarize',
    'BacktestConfig',
    'BacktestProgress',
    'BacktestRun',
    'BacktestSimulator',
    'default_backtest_config',
]
