"""Pytest fixtures for freight ledger tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest

from freight_ledger.config import LedgerConfig
from freight_ledger.context import ActorContext
from freight_ledger.core import LedgerCore
from freight_ledger.database import create_schema, get_engine, make_session_factory
from freight_ledger.models import Payee, Tenant


@dataclass
class SeedData:
    """Ids of the rows every test starts with."""

    tenant_id: UUID
    other_tenant_id: UUID
    driver_id: UUID  # 88% of base rate
    mileage_driver_id: UUID  # $2.00 per mile
    unprofiled_driver_id: UUID  # no pay profile
    dispatcher_id: UUID  # 5% commission
    other_tenant_driver_id: UUID


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so separate sessions see each other's commits."""
    engine = get_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(backoff_seconds=0)


@pytest.fixture
def core(session_factory, config) -> LedgerCore:
    return LedgerCore(session_factory, config)


@pytest.fixture
def seed(session_factory) -> SeedData:
    with session_factory() as session:
        tenant = Tenant(name="Acme Freight")
        other = Tenant(name="Other Carrier")
        session.add_all([tenant, other])
        session.flush()

        driver = Payee(
            tenant_id=tenant.tenant_id,
            name="Dana Driver",
            payee_type="driver",
            pay_type="percentage",
            pay_rate=Decimal("88"),
        )
        mileage_driver = Payee(
            tenant_id=tenant.tenant_id,
            name="Miles Driver",
            payee_type="driver",
            pay_type="per_mile",
            pay_rate=Decimal("2.00"),
            deduction_categories=["fuel"],
        )
        unprofiled = Payee(
            tenant_id=tenant.tenant_id,
            name="New Hire",
            payee_type="driver",
        )
        dispatcher = Payee(
            tenant_id=tenant.tenant_id,
            name="Dee Dispatcher",
            payee_type="dispatcher",
            pay_type="percentage",
            pay_rate=Decimal("5"),
        )
        foreign_driver = Payee(
            tenant_id=other.tenant_id,
            name="Elsewhere Driver",
            payee_type="driver",
            pay_type="percentage",
            pay_rate=Decimal("70"),
        )
        session.add_all([driver, mileage_driver, unprofiled, dispatcher, foreign_driver])
        session.commit()

        return SeedData(
            tenant_id=tenant.tenant_id,
            other_tenant_id=other.tenant_id,
            driver_id=driver.payee_id,
            mileage_driver_id=mileage_driver.payee_id,
            unprofiled_driver_id=unprofiled.payee_id,
            dispatcher_id=dispatcher.payee_id,
            other_tenant_driver_id=foreign_driver.payee_id,
        )


@pytest.fixture
def ctx(seed) -> ActorContext:
    return ActorContext(tenant_id=seed.tenant_id, actor_id="dispatcher-1", role="dispatcher")


@pytest.fixture
def admin(seed) -> ActorContext:
    return ActorContext(tenant_id=seed.tenant_id, actor_id="owner-1", role="owner")


def walk_to_delivered(core: LedgerCore, ctx: ActorContext, shipment_id: UUID, delivered_on: date):
    """Walk a shipment from available to delivered."""
    core.transition_shipment(ctx, shipment_id, "dispatched")
    core.transition_shipment(ctx, shipment_id, "in_transit")
    return core.transition_shipment(ctx, shipment_id, "delivered", delivered_on=delivered_on)


@pytest.fixture
def deliver():
    return walk_to_delivered


@pytest.fixture
def delivered_shipment(core, ctx, seed):
    """The 3000 + detention scenario, delivered with POD pending."""
    shipment = core.create_shipment(
        ctx,
        {
            "base_rate": "3000",
            "miles": "1200",
            "accessorials": [{"kind": "detention", "hours": "2", "rate": "75"}],
            "payee_id": seed.driver_id,
            "dispatcher_id": seed.dispatcher_id,
        },
    )
    return walk_to_delivered(core, ctx, shipment.shipment_id, date(2025, 3, 10))
