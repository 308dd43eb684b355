#!/usr/bin/env python
"""
Database seeding script
Creates the credit packages and a development admin account
"""
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from infinite_pages.db.engine import SessionLocal, init_db
from infinite_pages.db.models import (
    User,
    CreditPackage,
    SubscriptionTier,
    SubscriptionStatus,
)
from infinite_pages.auth import get_password_hash
from infinite_pages.services.plan_policy import TRIAL_PERIOD_DAYS, TRIAL_CREDITS

CREDIT_PACKAGES = [
    {
        "name": "Starter Pack",
        "description": "A handful of chapters to try things out",
        "credits_amount": 100,
        "price_usd": Decimal("4.99"),
        "bonus_credits": 0,
        "sort_order": 1,
    },
    {
        "name": "Writer Pack",
        "description": "Enough for a full novella",
        "credits_amount": 500,
        "price_usd": Decimal("19.99"),
        "bonus_credits": 50,
        "sort_order": 2,
    },
    {
        "name": "Author Pack",
        "description": "Best value for regular writers",
        "credits_amount": 1200,
        "price_usd": Decimal("39.99"),
        "bonus_credits": 300,
        "sort_order": 3,
    },
    {
        "name": "Publisher Pack",
        "description": "For creators running several series",
        "credits_amount": 3000,
        "price_usd": Decimal("89.99"),
        "bonus_credits": 900,
        "sort_order": 4,
    },
]


def seed_packages(db) -> int:
    """Insert packages that don't exist yet, matched by name"""
    existing = {name for (name,) in db.query(CreditPackage.name).all()}
    created = 0
    for package in CREDIT_PACKAGES:
        if package["name"] in existing:
            continue
        db.add(CreditPackage(**package))
        created += 1
    db.commit()
    return created


def seed_admin(db) -> bool:
    email = os.getenv("SEED_ADMIN_EMAIL", "admin@example.com")
    if db.query(User).filter(User.email == email).first():
        return False

    admin = User(
        email=email,
        hashed_password=get_password_hash(os.getenv("SEED_ADMIN_PASSWORD", "adminpassword123")),
        full_name="Admin User",
        is_active=True,
        is_admin=True,
        subscription_tier=SubscriptionTier.PREMIUM.value,
        subscription_status=SubscriptionStatus.TRIALING.value,
        trial_ends_at=datetime.utcnow() + timedelta(days=TRIAL_PERIOD_DAYS),
        credits_balance=TRIAL_CREDITS,
        credits_earned_total=TRIAL_CREDITS,
    )
    db.add(admin)
    db.commit()
    return True


def seed_database():
    """Seed database with initial data"""
    init_db()
    db = SessionLocal()

    try:
        print("Seeding database with initial data...")
        packages = seed_packages(db)
        admin_created = seed_admin(db)

        print("✓ Database seeded successfully!")
        print(f"  Created {packages} credit package(s)")
        if admin_created:
            print("  Created admin user (see SEED_ADMIN_EMAIL / SEED_ADMIN_PASSWORD)")
        else:
            print("  Admin user already exists, skipped")

    except Exception as e:
        print(f"❌ Error seeding database: {e}", file=sys.stderr)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_database()
