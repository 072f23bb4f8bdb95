# -*- coding: utf-8 -*-
"""
Dynamic Gate Registry Tests
===========================

Tests for fx_governor/governance/registry.py
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from fx_governor.errors import RegistryError
from fx_governor.governance import (
    DynamicGate,
    DynamicGateRegistry,
    FailurePatternSynthesizer,
    SynthesisPolicy,
    TradeOutcome,
    TradeProposal,
    parse_reason,
)

NOW = datetime(2024, 1, 1, 12, 0)


def proposal(pair="EUR_USD") -> TradeProposal:
    return TradeProposal(0, pair, "long", 0.6, (5.0, 15.0), (-7.0, -3.0))


class TestRegistryLifecycle:
    """create -> evaluate -> evict"""

    def test_starts_empty(self, registry):
        assert registry.active_count(NOW) == 0
        assert registry.total_gates_created == 0
        assert registry.audit_log == ()

    def test_create_and_evaluate(self, registry):
        registry.create("G13_LOSS_STREAK:EUR_USD", {"reason": "3 consecutive losses"},
                        now=NOW, ttl_minutes=60, pair="EUR_USD")
        results = registry.evaluate(proposal(), NOW + timedelta(minutes=30))
        assert [r.gate_id for r in results] == ["G13_LOSS_STREAK:EUR_USD"]
        assert results[0].triggered and results[0].blocking
        assert registry.evaluate(proposal("GBP_USD"), NOW) == []

    def test_global_gate_applies_to_every_pair(self, registry):
        registry.create("G14_GLOBAL_LOSS_STREAK", "halt", now=NOW, ttl_minutes=60)
        assert len(registry.evaluate(proposal("USD_JPY"), NOW)) == 1

    def test_expired_gate_ignored_before_eviction(self, registry):
        registry.create("G13_LOSS_STREAK:EUR_USD", "x", now=NOW, ttl_minutes=60, pair="EUR_USD")
        later = NOW + timedelta(minutes=60)
        assert registry.evaluate(proposal(), later) == []
        assert registry.active_count(later) == 0

    def test_evict_keeps_audit_and_total(self, registry):
        registry.create("A", "x", now=NOW, ttl_minutes=10)
        registry.create("B", "y", now=NOW, ttl_minutes=120)

        evicted = registry.evict_expired(NOW + timedelta(minutes=30))
        assert evicted == ["A"]
        assert registry.total_gates_created == 2
        assert [e.action for e in registry.audit_log] == ["created", "created", "evicted"]

        snap = registry.snapshot(NOW + timedelta(minutes=30))
        assert snap.active_count == 1
        assert snap.total_gates_created == 2

    def test_total_created_is_monotonic(self, registry):
        counts = []
        for i in range(5):
            registry.create(f"G{i}", "x", now=NOW + timedelta(minutes=i), ttl_minutes=1)
            registry.evict_expired(NOW + timedelta(minutes=i + 1))
            counts.append(registry.total_gates_created)
        assert counts == [1, 2, 3, 4, 5]

    def test_invalid_gate_leaves_state_unchanged(self, registry):
        registry.create("OK", "x", now=NOW, ttl_minutes=10)
        with pytest.raises(RegistryError):
            registry.create("BAD", "x", now=NOW, ttl_minutes=0)
        assert registry.total_gates_created == 1
        assert not registry.is_live("BAD", NOW)

    def test_eviction_failure_raises_registry_error(self, registry):
        registry.create("A", "x", now=NOW, ttl_minutes=10)
        with pytest.raises(RegistryError):
            registry.evict_expired(datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert registry.is_live("A", NOW)

    def test_revoke(self, registry):
        registry.create("A", "x", now=NOW, ttl_minutes=10)
        assert registry.revoke("A", NOW, "manual")
        assert not registry.revoke("A", NOW)
        assert registry.active_count(NOW) == 0


class TestGatePersistence:
    """DynamicGate record 경계"""

    def test_parse_reason_json(self):
        assert parse_reason('{"reason": "streak", "losses": 3}') == {"reason": "streak", "losses": 3}

    def test_parse_reason_plain_text(self):
        assert parse_reason("just text") == "just text"
        assert parse_reason('{"other": 1}') == '{"other": 1}'

    def test_parse_reason_dict_requires_reason(self):
        with pytest.raises(ValueError):
            parse_reason({"losses": 3})

    def test_record_roundtrip_structured_reason(self):
        gate = DynamicGate("G13_LOSS_STREAK:EUR_USD", "EUR_USD", {"reason": "3 losses", "losses": 3},
                           NOW, NOW + timedelta(hours=4))
        record = gate.to_record()
        assert json.loads(record["reason"])["losses"] == 3
        assert DynamicGate.from_record(record) == gate

    def test_from_record_converts_tz_to_naive_utc(self):
        gate = DynamicGate.from_record({
            "gate_id": "G14_GLOBAL_LOSS_STREAK",
            "pair": None,
            "reason": "halt",
            "created_at": "2024-01-01T21:00:00+09:00",
            "expires_at": "2024-01-01T23:00:00+09:00",
        })
        assert gate.created_at == datetime(2024, 1, 1, 12, 0)
        assert gate.pair is None

    def test_load_records_counts_errors(self, registry):
        good = DynamicGate("A", None, "x", NOW, NOW + timedelta(hours=1)).to_record()
        expired = DynamicGate("B", None, "x", NOW - timedelta(hours=2), NOW - timedelta(hours=1)).to_record()
        broken = {"gate_id": "C", "created_at": "not a date", "expires_at": "later"}
        loaded, errors = registry.load_records([good, expired, broken], now=NOW)
        assert (loaded, errors) == (1, 1)
        assert registry.is_live("A", NOW)

    def test_export_records(self, registry):
        registry.create("A", {"reason": "r"}, now=NOW, ttl_minutes=10)
        records = registry.export_records(NOW)
        assert records[0]["gate_id"] == "A"
        assert json.loads(records[0]["reason"]) == {"reason": "r"}


class TestFailurePatternSynthesizer:
    """반복 손실 -> dynamic gate"""

    def test_pair_loss_streak_creates_gate(self, registry):
        synth = FailurePatternSynthesizer(registry)
        created = []
        for i in range(3):
            created += synth.observe(TradeOutcome("EUR_USD", -7.0, NOW + timedelta(minutes=i)))
        assert [g.gate_id for g in created] == ["G13_LOSS_STREAK:EUR_USD"]
        assert registry.is_live("G13_LOSS_STREAK:EUR_USD", NOW + timedelta(hours=1))
        assert not registry.evaluate(proposal("GBP_USD"), NOW + timedelta(hours=1))

    def test_win_resets_streak(self, registry):
        synth = FailurePatternSynthesizer(registry)
        for pips in (-7, -7, 15, -7, -7):
            synth.observe(TradeOutcome("EUR_USD", pips, NOW))
        assert registry.total_gates_created == 0

    def test_global_streak(self, registry):
        policy = SynthesisPolicy(loss_streak=100, global_loss_streak=4)
        synth = FailurePatternSynthesizer(registry, policy)
        pairs = ["EUR_USD", "GBP_USD", "USD_JPY", "AUD_USD"]
        for i, pair in enumerate(pairs):
            synth.observe(TradeOutcome(pair, -5, NOW + timedelta(minutes=i)))
        assert registry.is_live("G14_GLOBAL_LOSS_STREAK", NOW + timedelta(minutes=10))
        assert len(registry.evaluate(proposal("NZD_USD"), NOW + timedelta(minutes=10))) == 1

    def test_disabled_policy(self, registry):
        synth = FailurePatternSynthesizer(registry, SynthesisPolicy(enabled=False))
        for _ in range(10):
            synth.observe(TradeOutcome("EUR_USD", -5, NOW))
        assert registry.total_gates_created == 0
