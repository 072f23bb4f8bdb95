# -*- coding: utf-8 -*-
"""
Gate & Scoring Tests
====================

Tests for fx_governor/governance/gates.py, scoring.py, context.py
"""
import math
from datetime import datetime, timedelta

import pytest

from fx_governor.errors import ProposalValidationError
from fx_governor.governance import (
    STATIC_GATE_IDS,
    CompositeScorer,
    DynamicGate,
    GateEvaluator,
    GateResult,
    GovernanceContext,
    ScoringWeights,
    TradeOutcome,
    TradeProposal,
    build_static_gates,
    classify_volatility_phase,
    evaluate_gate,
)
from fx_governor.governance.context import (
    apply_overrides,
    compute_sequencing,
    estimate_liquidity_shock,
    is_overtrading,
)


def make_proposal(**overrides) -> TradeProposal:
    data = dict(
        index=0,
        pair="EUR_USD",
        direction="long",
        base_win_probability=0.6,
        base_win_range=(5.0, 15.0),
        base_loss_range=(-7.0, -3.0),
    )
    data.update(overrides)
    return TradeProposal(**data)


def clean_context(**overrides) -> GovernanceContext:
    """모든 static gate 가 통과하는 context"""
    data = dict(
        mtf_alignment_score=100,
        htf_supports=True,
        mtf_confirms=True,
        ltf_clean=True,
        aggregated_score=0.5,
        friction_ratio=6.0,
        spread_stability_rank=85,
        liquidity_shock_prob=15,
        session="london-open",
        session_aggressiveness=88,
        price_data_available=True,
        analysis_available=True,
    )
    data.update(overrides)
    return GovernanceContext(**data)


class TestStaticGates:
    """G1 ~ G10 카탈로그"""

    def test_catalogue_order(self):
        assert STATIC_GATE_IDS[0] == "G1_FRICTION"
        assert STATIC_GATE_IDS[-1] == "G10_ANALYSIS_UNAVAILABLE"
        assert len(STATIC_GATE_IDS) == 10

    def test_clean_context_passes_all(self):
        results = GateEvaluator().evaluate(make_proposal(), clean_context())
        assert len(results) == 10
        assert not any(r.triggered for r in results)
        assert all(r.message == "pass" for r in results)

    def test_all_gates_evaluated_no_short_circuit(self):
        ctx = clean_context(friction_ratio=1.0, price_data_available=False, analysis_available=False)
        results = GateEvaluator().evaluate(make_proposal(), ctx)
        assert [r.gate_id for r in results] == list(STATIC_GATE_IDS)
        triggered = [r.gate_id for r in results if r.triggered]
        assert triggered == ["G1_FRICTION", "G9_PRICE_DATA_UNAVAILABLE", "G10_ANALYSIS_UNAVAILABLE"]

    @pytest.mark.parametrize("available,fires", [(True, False), (False, True)])
    def test_g10_iff_analysis_unavailable(self, available, fires):
        results = GateEvaluator().evaluate(make_proposal(), clean_context(analysis_available=available))
        g10 = [r for r in results if r.gate_id == "G10_ANALYSIS_UNAVAILABLE"][0]
        assert g10.triggered is fires

    def test_friction_message(self):
        results = GateEvaluator().evaluate(make_proposal(), clean_context(friction_ratio=2.04))
        assert results[0].message == "Friction ratio 2.0× < 3× threshold"

    @pytest.mark.parametrize("overrides,gate_id", [
        (dict(htf_supports=False, mtf_alignment_score=25), "G2_NO_HTF_WEAK_MTF"),
        (dict(edge_decaying=True, edge_decay_rate=35), "G3_EDGE_DECAY"),
        (dict(spread_stability_rank=25), "G4_SPREAD_INSTABILITY"),
        (dict(session_aggressiveness=10, volatility_phase="compression"), "G5_COMPRESSION_LOW_SESSION"),
        (dict(overtrading_throttled=True), "G6_OVERTRADING"),
        (dict(sequencing_cluster="loss-cluster", mtf_alignment_score=40), "G7_LOSS_CLUSTER_WEAK_MTF"),
        (dict(liquidity_shock_prob=80, volatility_phase="exhaustion"), "G8_HIGH_SHOCK"),
    ])
    def test_single_gate_triggers(self, overrides, gate_id):
        results = GateEvaluator().evaluate(make_proposal(), clean_context(**overrides))
        assert [r.gate_id for r in results if r.triggered] == [gate_id]

    def test_high_shock_allowed_in_ignition(self):
        ctx = clean_context(liquidity_shock_prob=80, volatility_phase="ignition")
        assert not any(r.triggered for r in GateEvaluator().evaluate(make_proposal(), ctx))

    def test_advisory_gate_triggers_without_blocking(self):
        evaluator = GateEvaluator(advisory=["G1_FRICTION"])
        results = evaluator.evaluate(make_proposal(), clean_context(friction_ratio=1.0))
        g1 = results[0]
        assert g1.triggered and g1.advisory
        assert not g1.blocking

    def test_unknown_advisory_id(self):
        with pytest.raises(ValueError):
            build_static_gates(["G99_NOPE"])

    def test_dynamic_gate_always_triggers(self):
        now = datetime(2024, 1, 1, 12)
        gate = DynamicGate("G13_LOSS_STREAK:EUR_USD", "EUR_USD", {"reason": "3 losses"},
                           now, now + timedelta(hours=1))
        result = evaluate_gate(gate, make_proposal())
        assert result.triggered
        assert result.kind == "dynamic"
        assert result.message == "3 losses"


class TestScoring:
    """Composite score: finite, monotone in triggered gates"""

    def test_formula(self):
        scorer = CompositeScorer()
        # 0.6·0.7 + 0.4·(0.5 + 0.5·0.4) - 0.15
        score = scorer.score(0.7, 0.4, True, "long", n_blocking=1)
        assert score == pytest.approx(0.42 + 0.28 - 0.15)

    def test_short_flips_analysis_sign(self):
        scorer = CompositeScorer()
        assert scorer.score(0.5, 0.4, True, "short", 0) < scorer.score(0.5, 0.4, True, "long", 0)

    def test_no_analysis_component_is_zero(self):
        breakdown = CompositeScorer().breakdown(0.5, 0.9, False, "long", 0)
        assert breakdown["analysis_term"] == 0.0

    def test_monotone_in_triggered_gates(self):
        scorer = CompositeScorer()
        scores = [scorer.score(0.6, 0.3, True, "long", n) for n in range(12)]
        assert all(b <= a for a, b in zip(scores, scores[1:]))
        assert scores[-1] == -1.0

    def test_advisory_penalty_smaller(self):
        scorer = CompositeScorer()
        blocking = scorer.score(0.6, 0.3, True, "long", n_blocking=1)
        advisory = scorer.score(0.6, 0.3, True, "long", n_blocking=0, n_advisory=1)
        assert blocking < advisory

    def test_always_finite(self):
        score = CompositeScorer().score(0.6, float("nan"), True, "long", 0)
        assert math.isfinite(score)

    def test_score_results_counts_kinds(self):
        results = [
            GateResult("G1_FRICTION", "static", "x", True, advisory=False),
            GateResult("G4_SPREAD_INSTABILITY", "static", "x", True, advisory=True),
            GateResult("G6_OVERTRADING", "static", "pass", False),
        ]
        breakdown = CompositeScorer().score_results(0.5, 0.0, True, "long", results)
        assert breakdown["gate_penalty"] == pytest.approx(0.15 + 0.05)

    def test_negative_penalty_rejected(self):
        with pytest.raises(ValueError):
            CompositeScorer(ScoringWeights(gate_penalty=-0.1))


class TestContext:
    """context 구성 요소"""

    @pytest.mark.parametrize("ratio,phase", [
        (0.5, "compression"), (0.8, "compression"), (1.0, "expansion"),
        (1.5, "ignition"), (2.0, "exhaustion"),
    ])
    def test_volatility_phase(self, ratio, phase):
        assert classify_volatility_phase(ratio, 1.0)[0] == phase

    def test_liquidity_shock_rollover(self):
        # 100 - 25 + 15 (rollover)
        assert estimate_liquidity_shock(25, "expansion", "rollover") == 90

    def test_sequencing_loss_cluster(self):
        now = datetime(2024, 1, 1, 12)
        recent = [TradeOutcome("EUR_USD", -5, now - timedelta(minutes=i)) for i in range(5)]
        cluster, decaying, _ = compute_sequencing(recent)
        assert cluster == "loss-cluster"
        assert not decaying

    def test_edge_decay(self):
        now = datetime(2024, 1, 1, 12)
        recent = [TradeOutcome("EUR_USD", -5 if i < 8 else 5, now - timedelta(minutes=i)) for i in range(20)]
        _, decaying, rate = compute_sequencing(recent)
        assert decaying
        assert rate > 20

    def test_overtrading_window(self):
        now = datetime(2024, 1, 1, 22)
        recent = [TradeOutcome("EUR_USD", 1, now - timedelta(minutes=5)),
                  TradeOutcome("EUR_USD", 1, now - timedelta(minutes=10))]
        assert is_overtrading(recent, "rollover", now)
        assert not is_overtrading(recent, "london-open", now)

    def test_unknown_override_field(self):
        with pytest.raises(ProposalValidationError):
            apply_overrides(clean_context(), {"not_a_field": 1})
