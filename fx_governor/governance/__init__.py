"""
Governance Module
=================

Static gate catalogue, dynamic gate registry, composite scoring,
and the DecisionEngine that orchestrates them.
"""
from .types import (
    TradeProposal,
    TradeOutcome,
    GovernanceContext,
    StaticGate,
    DynamicGate,
    GateResult,
    DecisionState,
    DecisionResult,
    parse_reason,
)
from .gates import (
    STATIC_GATES,
    STATIC_GATE_IDS,
    GateEvaluator,
    build_static_gates,
    evaluate_gate,
)
from .context import build_governance_context, classify_volatility_phase
from .registry import (
    DynamicGateRegistry,
    RegistryEvent,
    RegistrySnapshot,
    SynthesisPolicy,
    FailurePatternSynthesizer,
)
from .scoring import CompositeScorer, ScoringWeights
from .engine import DecisionEngine, GovernanceStats, compute_governance_stats

__all__ = [
    'TradeProposal',
    'TradeOutcome',
    'GovernanceContext',
    'StaticGate',
    'DynamicGate',
    'GateResult',
    'DecisionState',
    'DecisionResult',
    'parse_reason',
    'STATIC_GATES',
    'STATIC_GATE_IDS',
    'GateEvaluator',
    'build_static_gates',
    'evaluate_gate',
    'build_governance_context',
    'classify_volatility_phase',
    'DynamicGateRegistry',
    'RegistryEvent',
    'RegistrySnapshot',
    'SynthesisPolicy',
    'FailurePatternSynthesizer',
    'CompositeScorer',
    'ScoringWeights',
    'DecisionEngine',
    'GovernanceStats',
    'compute_governance_stats',
]
