"""Tests for transaction retry and configuration."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from freight_ledger.config import LedgerConfig, Settings
from freight_ledger.database import is_retryable, run_in_transaction
from freight_ledger.errors import SequenceExhausted, TransactionConflict, ValidationError
from freight_ledger.models import DocumentCounter, Tenant


class TestRunInTransaction:
    """Tests for the retry wrapper."""

    def test_commits_on_success(self, session_factory):
        tenant_id = run_in_transaction(session_factory, lambda s: _add_tenant(s, "Committed"))

        with session_factory() as session:
            assert session.get(Tenant, tenant_id).name == "Committed"

    def test_retries_conflicts_with_backoff(self, session_factory):
        calls = []
        delays: list[float] = []

        def work(session):
            calls.append(session)
            if len(calls) < 3:
                raise TransactionConflict("lost the race")
            return "done"

        result = run_in_transaction(
            session_factory,
            work,
            config=LedgerConfig(max_attempts=5, backoff_seconds=0.1),
            sleep=delays.append,
        )

        assert result == "done"
        assert delays == [0.1, 0.2]
        assert len({id(session) for session in calls}) == 3

    def test_failed_attempt_is_rolled_back(self, session_factory):
        attempts = {"count": 0}

        def work(session):
            attempts["count"] += 1
            _add_tenant(session, f"attempt {attempts['count']}")
            if attempts["count"] == 1:
                raise TransactionConflict("lost the race")
            return attempts["count"]

        run_in_transaction(session_factory, work, config=LedgerConfig(backoff_seconds=0))

        with session_factory() as session:
            names = {tenant.name for tenant in session.query(Tenant).all()}
        assert "attempt 1" not in names
        assert "attempt 2" in names

    def test_non_retryable_propagates_immediately(self, session_factory):
        calls = []

        def work(session):
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_in_transaction(session_factory, work, config=LedgerConfig(backoff_seconds=0))
        assert len(calls) == 1

    def test_exhaustion_raises_last_conflict(self, session_factory):
        def work(session):
            raise TransactionConflict("still losing")

        with pytest.raises(TransactionConflict, match="still losing"):
            run_in_transaction(session_factory, work, config=LedgerConfig(max_attempts=2, backoff_seconds=0))

    def test_exhaustion_uses_custom_error(self, session_factory):
        def work(session):
            raise TransactionConflict("still losing")

        with pytest.raises(SequenceExhausted) as exc_info:
            run_in_transaction(
                session_factory,
                work,
                config=LedgerConfig(max_attempts=2, backoff_seconds=0),
                on_exhausted=lambda attempts: SequenceExhausted("t", "invoice", 2025, attempts),
            )
        assert exc_info.value.attempts == 2

    def test_unique_violation_is_retried(self, session_factory, seed):
        """A commit that collides on a unique key is redone with fresh reads."""
        with session_factory() as session:
            session.add(DocumentCounter(tenant_id=seed.tenant_id, counter_type="invoice", year=2025, value=1001))
            session.commit()
        years = iter([2025, 2026])

        def work(session):
            year = next(years)
            session.add(DocumentCounter(tenant_id=seed.tenant_id, counter_type="invoice", year=year, value=1001))
            session.flush()
            return year

        assert run_in_transaction(session_factory, work, config=LedgerConfig(backoff_seconds=0)) == 2026

    def test_is_retryable(self):
        assert is_retryable(TransactionConflict("x"))
        assert is_retryable(StaleDataError("x"))
        assert not is_retryable(ValidationError("x"))
        assert not is_retryable(RuntimeError("x"))

    def test_is_retryable_driver_errors(self):
        assert is_retryable(IntegrityError("INSERT", {}, PgError("23505")))
        assert is_retryable(
            IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: invoice.invoice_number"))
        )
        assert not is_retryable(IntegrityError("INSERT", {}, PgError("23502")))
        assert not is_retryable(IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: invoice.amount")))
        assert is_retryable(OperationalError("UPDATE", {}, PgError("40001")))
        assert is_retryable(OperationalError("UPDATE", {}, Exception("database is locked")))
        assert not is_retryable(OperationalError("SELECT", {}, Exception("no such table: invoice")))


class TestLedgerConfig:
    """Tests for configuration validation."""

    def test_defaults(self):
        config = LedgerConfig()

        assert config.auto_apply_adjustments is False
        assert config.require_pod_for_invoice is True
        assert config.invoice_terms_days == 30
        assert config.commission_basis == "base_rate"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"backoff_seconds": -1},
            {"invoice_terms_days": -5},
            {"commission_basis": "gross"},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            LedgerConfig(**kwargs)

    def test_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///ledger.db")
        monkeypatch.setenv("AUTO_APPLY_ADJUSTMENTS", "true")
        monkeypatch.setenv("INVOICE_TERMS_DAYS", "45")
        monkeypatch.setenv("COMMISSION_BASIS", "grand_total")

        settings = Settings.from_env()
        config = settings.ledger_config()

        assert settings.database_url == "sqlite:///ledger.db"
        assert config.auto_apply_adjustments is True
        assert config.invoice_terms_days == 45
        assert config.commission_basis == "grand_total"


def _add_tenant(session, name):
    tenant = Tenant(name=name)
    session.add(tenant)
    session.flush()
    return tenant.tenant_id


class PgError(Exception):
    """Stand-in for a driver error carrying a SQLSTATE."""

    def __init__(self, pgcode):
        super().__init__(f"sqlstate {pgcode}")
        self.pgcode = pgcode
