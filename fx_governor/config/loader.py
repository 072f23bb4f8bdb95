"""
Config Loader
=============

YAML 기반 governance / backtest 파라미터 로더.

사용법:
    from fx_governor.config import load_settings

    settings = load_settings()                       # config/default.yaml
    settings = load_settings("config/aggressive.yaml")  # default + override
    settings.scoring.gate_penalty    # 0.15
    settings.backtest.pairs          # 8 majors

환경변수 오버라이드:
    FXGOV_BACKTEST_SEED=7              # 백테스트 seed
    FXGOV_GATE_PENALTY=0.2             # blocking gate penalty
    FXGOV_ADVISORY_GATES=G4_SPREAD_INSTABILITY,G6_OVERTRADING
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from fx_governor.analysis.multi_tf import AnalyzerConfig
from fx_governor.governance.registry import SynthesisPolicy
from fx_governor.governance.scoring import ScoringWeights
from fx_governor.market.tickers import MAJOR_PAIRS
from fx_governor.utils.timeframe import TIMEFRAME_WEIGHTS


CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


@dataclass
class BacktestDefaults:
    """백테스트 기본값"""
    seed: int = 42
    window_days: int = 90
    pairs: List[str] = field(default_factory=lambda: list(MAJOR_PAIRS))
    variant_id: str = "baseline"
    tp_pips: float = 15.0
    sl_pips: float = 7.0
    max_duration_bars: int = 48      # 48 × 15m = 12h
    cooldown_bars: int = 2
    units: int = 1000
    spread_multiplier: float = 1.0
    slippage_multiplier: float = 1.0
    split_shadow_orders: bool = False


@dataclass
class GovernanceSettings:
    """통합 설정"""
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    synthesis: SynthesisPolicy = field(default_factory=SynthesisPolicy)
    backtest: BacktestDefaults = field(default_factory=BacktestDefaults)
    advisory_gates: List[str] = field(default_factory=list)
    primary_timeframe: str = "15m"
    raw: Dict[str, Any] = field(default_factory=dict)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: Dict) -> Dict:
    if os.getenv("FXGOV_BACKTEST_SEED"):
        config.setdefault("backtest", {})
        config["backtest"]["seed"] = int(os.getenv("FXGOV_BACKTEST_SEED"))
    if os.getenv("FXGOV_GATE_PENALTY"):
        config.setdefault("scoring", {})
        config["scoring"]["gate_penalty"] = float(os.getenv("FXGOV_GATE_PENALTY"))
    if os.getenv("FXGOV_ADVISORY_GATES") is not None:
        config.setdefault("gates", {})
        raw = os.getenv("FXGOV_ADVISORY_GATES", "")
        config["gates"]["advisory"] = [g.strip() for g in raw.split(",") if g.strip()]
    return config


def _section(cls, data: Optional[Dict[str, Any]]):
    """dataclass 필드에 해당하는 키만 골라 생성 (모르는 키 무시)"""
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (data or {}).items() if k in names})


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """default.yaml (+ override 파일) + env 를 합친 raw dict"""
    merged = _load_yaml(CONFIG_DIR / "default.yaml")
    if path is not None:
        merged = _deep_merge(merged, _load_yaml(Path(path)))
    return _apply_env_overrides(merged)


def load_settings(path: Optional[Union[str, Path]] = None) -> GovernanceSettings:
    """설정 로드 -> GovernanceSettings (파일 없으면 기본값)"""
    merged = load_config(path)

    analysis = dict(merged.get("analysis", {}))
    if "timeframes" in analysis:
        analysis["timeframes"] = tuple(analysis["timeframes"])
    analysis["weights"] = {**TIMEFRAME_WEIGHTS, **(analysis.get("weights") or {})}

    backtest = dict(merged.get("backtest", {}))
    if "pairs" in backtest:
        backtest["pairs"] = list(backtest["pairs"])

    return GovernanceSettings(
        analyzer=_section(AnalyzerConfig, analysis),
        scoring=_section(ScoringWeights, merged.get("scoring")).validate(),
        synthesis=_section(SynthesisPolicy, merged.get("synthesis")),
        backtest=_section(BacktestDefaults, backtest),
        advisory_gates=list((merged.get("gates") or {}).get("advisory") or []),
        primary_timeframe=(merged.get("engine") or {}).get("primary_timeframe", "15m"),
        raw=merged,
    )
