"""
FX Governor - Trade Governance Engine
=====================================

Core Components:
- market/: ticker resolution + candle sources (historical / synthetic)
- analysis/: multi-timeframe ATR / trend-core analysis, readiness checks
- governance/: static gate catalogue, dynamic gate registry, composite score,
  DecisionEngine (proposal in, audited decision out)
- execution/: shadow order splitter (sizing + fill bookkeeping only)
- backtest/: deterministic replay simulator, spread/slippage model, summary
- db/: trade record store (SQL Server / any DB-API connection)
- config/: YAML settings loader
"""

__version__ = "0.3.0"
