"""Tests for document number minting."""

from __future__ import annotations

import threading

import pytest

from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.core import LedgerCore
from freight_ledger.errors import SequenceExhausted, TransactionConflict, ValidationError
from freight_ledger.services.sequence_service import (
    CounterType,
    SequenceService,
    current_year,
    format_number,
    mint_number,
    parse_number,
)


class TestNumberFormat:
    """Tests for rendering and parsing document numbers."""

    def test_format(self):
        assert format_number(CounterType.INVOICE, 2025, 1001) == "INV-2025-1001"
        assert format_number("settlement", 2025, 7) == "SET-2025-0007"
        assert format_number("shipment", 2025, 12345) == "LD-2025-12345"

    def test_parse(self):
        assert parse_number("SET-2025-1007") == (CounterType.SETTLEMENT, 2025, 1007)

    def test_parse_rejects_malformed(self):
        with pytest.raises(ValidationError):
            parse_number("INV2025-1")

    def test_parse_rejects_unknown_prefix(self):
        with pytest.raises(ValidationError):
            parse_number("PO-2025-1001")


class TestMinting:
    """Tests for counter advancement."""

    def test_first_number_is_1001(self, core, ctx):
        assert core.mint_number(ctx, "invoice", 2025) == "INV-2025-1001"
        assert core.mint_number(ctx, "invoice", 2025) == "INV-2025-1002"

    def test_counters_are_independent(self, core, ctx):
        """Each counter type and year has its own sequence."""
        core.mint_number(ctx, "invoice", 2025)

        assert core.mint_number(ctx, "settlement", 2025) == "SET-2025-1001"
        assert core.mint_number(ctx, "invoice", 2026) == "INV-2026-1001"

    def test_counters_are_per_tenant(self, core, ctx, seed):
        other = ActorContext(tenant_id=seed.other_tenant_id, actor_id="someone", role="owner")
        core.mint_number(ctx, "invoice", 2025)

        assert core.mint_number(other, "invoice", 2025) == "INV-2025-1001"

    def test_default_year_is_current(self, core, ctx):
        assert core.mint_number(ctx, "settlement") == f"SET-{current_year()}-1001"

    def test_mint_is_audited(self, core, ctx):
        core.mint_number(ctx, "invoice", 2025)
        core.mint_number(ctx, "invoice", 2025)

        entries = core.audit_for_entity(ctx, "counter", "invoice_2025")

        assert [entry.action for entry in entries] == ["create", "update"]
        assert entries[-1].before == {"value": 1001}
        assert entries[-1].after == {"value": 1002}

    def test_peek_does_not_advance(self, core, ctx, session_factory):
        core.mint_number(ctx, "invoice", 2025)
        with session_factory() as session:
            service = SequenceService(session, ctx)
            assert service.peek("invoice", 2025) == 1001
            assert service.peek("invoice", 2025) == 1001
            assert service.peek("settlement", 2025) == 1000


class TestConflicts:
    """Tests for minting under lost races."""

    def test_lost_races_never_duplicate_or_skip(self, core, ctx, monkeypatch):
        """Every other attempt loses after writing; numbers stay contiguous."""
        original = SequenceService.next_value
        attempts = {"count": 0}

        def flaky(self, counter_type, year=None):
            value = original(self, counter_type, year)
            attempts["count"] += 1
            if attempts["count"] % 2 == 1:
                raise TransactionConflict("lost the race")
            return value

        monkeypatch.setattr(SequenceService, "next_value", flaky)

        numbers = [core.mint_number(ctx, "invoice", 2025) for _ in range(5)]

        assert numbers == [f"INV-2025-{value}" for value in range(1001, 1006)]
        assert attempts["count"] == 10

    def test_concurrent_mints_are_distinct_and_contiguous(self, session_factory, ctx):
        """Writers racing on one counter each get their own number, with no gaps."""
        workers = 8
        # a lost compare-and-set means another writer committed, so losses are bounded by workers
        core = LedgerCore(session_factory, LedgerConfig(max_attempts=workers + 2, backoff_seconds=0))
        barrier = threading.Barrier(workers, timeout=10)
        numbers: list[str] = []
        errors: list[Exception] = []

        def mint():
            barrier.wait()
            try:
                numbers.append(core.mint_number(ctx, "invoice", 2025))
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=mint) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert sorted(numbers) == [f"INV-2025-{value}" for value in range(1001, 1001 + workers)]
        with session_factory() as session:
            assert SequenceService(session, ctx).peek("invoice", 2025) == 1000 + workers

    def test_exhaustion(self, session_factory, ctx, monkeypatch):
        def always_conflict(self, counter_type, year=None):
            raise TransactionConflict("lost the race")

        monkeypatch.setattr(SequenceService, "next_value", always_conflict)
        delays: list[float] = []

        with pytest.raises(SequenceExhausted) as exc_info:
            mint_number(
                session_factory,
                ctx,
                "invoice",
                2025,
                config=LedgerConfig(max_attempts=3, backoff_seconds=0.01),
                sleep=delays.append,
            )

        assert exc_info.value.attempts == 3
        assert exc_info.value.counter_type == "invoice"
        assert delays == [0.01, 0.02]

    def test_exhaustion_leaves_counter_untouched(self, core, ctx, session_factory, monkeypatch):
        core.mint_number(ctx, "invoice", 2025)
        original = SequenceService.next_value

        def lose_after_write(self, counter_type, year=None):
            original(self, counter_type, year)
            raise TransactionConflict("lost the race")

        monkeypatch.setattr(SequenceService, "next_value", lose_after_write)
        with pytest.raises(SequenceExhausted):
            core.mint_number(ctx, "invoice", 2025)

        with session_factory() as session:
            assert SequenceService(session, ctx).peek("invoice", 2025) == 1001


class TestSyncCounter:
    """Tests for counter recovery."""

    def test_sync_raises_counter_to_highest_issued(self, core, ctx, seed):
        core.create_shipment(ctx, {"base_rate": "100"}, shipment_number="LD-2025-1050")
        core.create_shipment(ctx, {"base_rate": "100"}, shipment_number="LD-2025-1020")

        assert core.sync_counter(ctx, "shipment", 2025) == 1050
        assert core.mint_number(ctx, "shipment", 2025) == "LD-2025-1051"

    def test_sync_never_lowers(self, core, ctx):
        for _ in range(3):
            core.mint_number(ctx, "invoice", 2025)

        assert core.sync_counter(ctx, "invoice", 2025) == 1003
        assert core.mint_number(ctx, "invoice", 2025) == "INV-2025-1004"

    def test_sync_with_nothing_issued(self, core, ctx):
        assert core.sync_counter(ctx, "settlement", 2025) == 1000
        assert core.mint_number(ctx, "settlement", 2025) == "SET-2025-1001"

    def test_sync_is_audited(self, core, ctx):
        core.create_shipment(ctx, {"base_rate": "100"}, shipment_number="LD-2025-1010")
        core.sync_counter(ctx, "shipment", 2025)

        entries = core.audit_for_entity(ctx, "counter", "shipment_2025")

        assert entries[-1].reason == "counter sync"
        assert entries[-1].after == {"value": 1010}
