"""
Database initialization script
Run this to create tables and seed IRDAI caps plus a demo tenant
"""
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from brokerdesk.core.database import engine, Base, SessionLocal
from brokerdesk.models import MotorPayoutGrid, HealthPayoutGrid, LifePayoutGrid, Employee, Agent
from brokerdesk.services.compliance import seed_default_caps

DEMO_ORG = "demo"


def init_db():
    """Initialize database with tables"""
    print("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("✓ Tables created successfully")


def seed_data():
    """Seed regulator caps and a small demo payout grid"""
    db = SessionLocal()

    try:
        print("\nSeeding initial data...")

        added = seed_default_caps(db)
        print(f"✓ {added} IRDAI caps added")

        if not db.query(MotorPayoutGrid).filter(MotorPayoutGrid.org_id == DEMO_ORG).first():
            db.add_all([
                MotorPayoutGrid(
                    org_id=DEMO_ORG, provider="ICICI Lombard", commission_rate=Decimal("10"),
                    reward_rate=Decimal("2"), valid_from=date(2024, 4, 1),
                ),
                MotorPayoutGrid(
                    org_id=DEMO_ORG, provider="ICICI Lombard", vehicle_make="Maruti", fuel_type="Petrol",
                    commission_rate=Decimal("12"), reward_rate=Decimal("1"), valid_from=date(2024, 4, 1),
                ),
                HealthPayoutGrid(
                    org_id=DEMO_ORG, provider="Star Health", sum_insured_min=Decimal("0"),
                    sum_insured_max=Decimal("1000000"), commission_rate=Decimal("15"),
                    valid_from=date(2024, 4, 1),
                ),
                LifePayoutGrid(
                    org_id=DEMO_ORG, provider="HDFC Life", ppt=10, pt=20,
                    commission_rate=Decimal("25"), valid_from=date(2024, 4, 1),
                ),
            ])
            print("✓ Demo payout grid created")

        if not db.query(Employee).filter(Employee.org_id == DEMO_ORG).first():
            manager = Employee(
                org_id=DEMO_ORG, name="Priya Sharma",
                incentive_share_pct=Decimal("10"), override_pct=Decimal("5"),
            )
            db.add(manager)
            db.flush()
            db.add(Agent(
                org_id=DEMO_ORG, name="Rahul Verma",
                commission_share_pct=Decimal("70"), reporting_employee_id=manager.id,
            ))
            print("✓ Demo employee and agent created")

        db.commit()
        print("\n✓ Database seeded successfully!")

    except Exception as e:
        print(f"\n✗ Error seeding data: {e}")
        db.rollback()
    finally:
        db.close()


if __name__ == "__main__":
    print("=" * 60)
    print("Broking Commission Core - Database Initialization")
    print("=" * 60)

    init_db()
    seed_data()

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    print("\nYou can now access:")
    print("  - API: http://localhost:8000")
    print("  - API Docs: http://localhost:8000/docs")
    print(f"\nDemo tenant: send X-Org-Id: {DEMO_ORG} with any X-User-Id")
    print("=" * 60)
