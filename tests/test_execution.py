# -*- coding: utf-8 -*-
"""
Shadow Order Splitter Tests
===========================

Tests for fx_governor/execution/shadow_splitter.py
"""
from datetime import datetime

import pytest

from fx_governor.execution import ShadowOrderSplitter
from fx_governor.governance import DecisionResult, TradeProposal


def decision(pair="EUR_USD", direction="long", admitted=True) -> DecisionResult:
    proposal = TradeProposal(7, pair, direction, 0.6, (5.0, 15.0), (-7.0, -3.0))
    return DecisionResult(
        proposal=proposal,
        admitted=admitted,
        composite_score=0.5,
        gate_results=(),
        context_snapshot={},
        decided_at=datetime(2024, 1, 1, 10, 0),
    )


class TestShadowSplit:
    """Σ leg.units == total_units"""

    @pytest.mark.parametrize("total", [1, 7, 100, 1000, 12345])
    def test_units_conserved(self, total):
        plan = ShadowOrderSplitter().split(decision(), total)
        assert plan.allocated_units == total
        assert all(leg.units > 0 for leg in plan.legs)

    def test_eur_usd_legs(self):
        plan = ShadowOrderSplitter().split(decision(), 1000)
        # pool 600 -> floor(600·w/0.7)
        assert [(l.pair, l.units) for l in plan.shadows] == [
            ("EUR_GBP", 257), ("EUR_JPY", 214), ("GBP_USD", 128),
        ]
        assert plan.primary.units == 401
        assert plan.primary.role == "PRIMARY"

    def test_inverse_correlation_flips_direction(self):
        plan = ShadowOrderSplitter().split(decision(direction="long"), 1000)
        directions = {l.pair: l.direction for l in plan.shadows}
        assert directions["EUR_GBP"] == "long"
        assert directions["GBP_USD"] == "short"

    def test_pair_without_map_is_single_leg(self):
        plan = ShadowOrderSplitter().split(decision(pair="CHF_JPY"), 500)
        assert len(plan.legs) == 1
        assert plan.primary.units == 500

    def test_max_shadow_legs(self):
        plan = ShadowOrderSplitter(max_shadow_legs=1).split(decision(), 1000)
        assert len(plan.shadows) == 1
        assert plan.allocated_units == 1000

    def test_rejected_decision_raises(self):
        with pytest.raises(ValueError):
            ShadowOrderSplitter().split(decision(admitted=False), 1000)

    @pytest.mark.parametrize("total", [0, -5, 10.5, True])
    def test_invalid_units(self, total):
        with pytest.raises(ValueError):
            ShadowOrderSplitter().split(decision(), total)

    def test_invalid_primary_weight(self):
        with pytest.raises(ValueError):
            ShadowOrderSplitter().split(decision(), 1000, primary_weight=0)

    def test_fill_tracking(self):
        plan = ShadowOrderSplitter().split(decision(), 1000)
        assert not plan.all_filled
        for i in range(len(plan.legs)):
            plan.mark_leg(i, "FILLED", order_id=f"ord-{i}")
        assert plan.all_filled

        with pytest.raises(ValueError):
            plan.mark_leg(0, "LOST")

    def test_simulate_and_audit_payload(self):
        plan = ShadowOrderSplitter().split(decision(), 1000, signal_id="sig-1").simulate()
        payload = plan.to_audit_payload()
        assert payload["all_filled"]
        assert payload["signal_id"] == "sig-1"
        assert payload["shadow_legs"] == 3
        assert sum(l["units"] for l in payload["legs"]) == 1000

    def test_signal_id_deterministic(self):
        a = ShadowOrderSplitter().split(decision(), 1000)
        b = ShadowOrderSplitter().split(decision(), 1000)
        assert a.signal_id == b.signal_id
