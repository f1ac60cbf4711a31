import os

# In-memory database for every test run; must be set before brokerdesk is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

import brokerdesk.models  # noqa: F401
from brokerdesk.core.cache import get_cache
from brokerdesk.core.database import Base, engine, SessionLocal, get_db
from brokerdesk.main import app
from brokerdesk.models import (
    MotorPayoutGrid, HealthPayoutGrid, LifePayoutGrid, CampaignBonus, ComplianceRule,
    Policy, Agent, Employee, Misp,
)

ORG = "org-a"
OTHER_ORG = "org-b"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    get_cache().clear()
    try:
        yield session
    finally:
        session.close()
        get_cache().clear()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: startup seeding is left to the tests that want it
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-Org-Id": ORG, "X-User-Id": "u-1", "X-User-Role": "admin", "X-User-Name": "Asha Admin"}


@pytest.fixture
def employee_headers():
    return {"X-Org-Id": ORG, "X-User-Id": "u-2", "X-User-Role": "employee"}


# ── Factories ───────────────────────────────────────────────────────

@pytest.fixture
def motor_entry(db):
    def make(provider="ICICI Lombard", commission_rate="10", reward_rate="0",
             valid_from=date(2024, 1, 1), valid_to=None, org_id=ORG, **dims):
        entry = MotorPayoutGrid(
            org_id=org_id,
            provider=provider,
            commission_rate=Decimal(commission_rate),
            reward_rate=Decimal(reward_rate),
            valid_from=valid_from,
            valid_to=valid_to,
            **dims,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
    return make


@pytest.fixture
def health_entry(db):
    def make(provider="Star Health", commission_rate="15", valid_from=date(2024, 1, 1), org_id=ORG, **dims):
        entry = HealthPayoutGrid(
            org_id=org_id,
            provider=provider,
            commission_rate=Decimal(commission_rate),
            reward_rate=Decimal("0"),
            valid_from=valid_from,
            **dims,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
    return make


@pytest.fixture
def life_entry(db):
    def make(provider="HDFC Life", commission_rate="25", valid_from=date(2024, 1, 1), org_id=ORG, **dims):
        entry = LifePayoutGrid(
            org_id=org_id,
            provider=provider,
            commission_rate=Decimal(commission_rate),
            reward_rate=Decimal("0"),
            valid_from=valid_from,
            **dims,
        )
        db.add(entry)
        db.commit()
        db.refresh(entry)
        return entry
    return make


@pytest.fixture
def campaign(db):
    def make(bonus_rate="1", valid_from=date(2024, 1, 1), valid_to=date(2024, 12, 31),
             is_exclusive=False, org_id=ORG, name="Festive push", **kw):
        c = CampaignBonus(
            org_id=org_id,
            campaign_name=name,
            bonus_rate=Decimal(bonus_rate),
            valid_from=valid_from,
            valid_to=valid_to,
            is_exclusive=is_exclusive,
            **kw,
        )
        db.add(c)
        db.commit()
        db.refresh(c)
        return c
    return make


@pytest.fixture
def cap(db):
    def make(product_category="motor", max_allowed_rate="20", org_id=None, effective_from=date(2023, 4, 1),
             channel=None):
        rule = ComplianceRule(
            org_id=org_id,
            product_category=product_category,
            channel=channel,
            max_allowed_rate=Decimal(max_allowed_rate),
            effective_from=effective_from,
        )
        db.add(rule)
        db.commit()
        db.refresh(rule)
        return rule
    return make


@pytest.fixture
def agent_with_manager(db):
    def make(share="70", override="5", org_id=ORG):
        manager = Employee(org_id=org_id, name="Priya Sharma", incentive_share_pct=Decimal("10"),
                           override_pct=Decimal(override))
        db.add(manager)
        db.flush()
        agent = Agent(org_id=org_id, name="Rahul Verma", commission_share_pct=Decimal(share),
                      reporting_employee_id=manager.id)
        db.add(agent)
        db.commit()
        db.refresh(agent)
        return agent
    return make


@pytest.fixture
def policy(db):
    counter = {"n": 0}

    def make(product_type="motor", provider="ICICI Lombard", premium="50000",
             issue_date=date(2024, 6, 15), source_type="direct", org_id=ORG, **kw):
        counter["n"] += 1
        kw.setdefault("policy_number", f"POL-{counter['n']:04d}")
        p = Policy(
            org_id=org_id,
            product_type=product_type,
            provider=provider,
            premium=Decimal(premium),
            issue_date=issue_date,
            source_type=source_type,
            **kw,
        )
        db.add(p)
        db.commit()
        db.refresh(p)
        return p
    return make


@pytest.fixture
def misp(db):
    def make(share="60", org_id=ORG):
        m = Misp(org_id=org_id, name="City Motors", commission_share_pct=Decimal(share))
        db.add(m)
        db.commit()
        db.refresh(m)
        return m
    return make
