#!/usr/bin/env python3
"""
Database Seeder for CivicSense

Creates the default admin, one authority account per department and,
optionally, demo citizens with issues spread over a few cities.

Usage:
    # From project root with venv activated:
    python scripts/seed_database.py

    # Or via docker:
    docker-compose exec api python scripts/seed_database.py

    # With options:
    python scripts/seed_database.py --demo-issues 40 --admin-password 'S3cret!'
"""
import argparse
import os
import random
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

DEFAULT_ADMIN_EMAIL = "admin@civicsense.com"
DEFAULT_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "CivicAdmin@2025!Secure")
DEFAULT_NUM_CITIZENS = 10

AUTHORITY_ACCOUNTS = [
    {"name": "Roads Department", "email": "roads@civicsense.com", "department": "roads"},
    {"name": "Sanitation Department", "email": "sanitation@civicsense.com", "department": "sanitation"},
    {"name": "Water Department", "email": "water@civicsense.com", "department": "water"},
    {"name": "Electricity Department", "email": "electricity@civicsense.com", "department": "electricity"},
]

SAMPLE_LOCATIONS = [
    {"lat": 28.6139, "lng": 77.2090, "address": "Connaught Place, New Delhi"},
    {"lat": 28.6304, "lng": 77.2177, "address": "Karol Bagh, New Delhi"},
    {"lat": 28.5672, "lng": 77.2100, "address": "Saket, New Delhi"},
    {"lat": 19.0760, "lng": 72.8777, "address": "Mumbai Central, Mumbai"},
    {"lat": 19.0178, "lng": 72.8478, "address": "Bandra, Mumbai"},
    {"lat": 12.9716, "lng": 77.5946, "address": "MG Road, Bangalore"},
    {"lat": 12.9352, "lng": 77.6245, "address": "Koramangala, Bangalore"},
    {"lat": 17.3850, "lng": 78.4867, "address": "Hyderabad Central, Hyderabad"},
    {"lat": 13.0827, "lng": 80.2707, "address": "T. Nagar, Chennai"},
    {"lat": 22.5726, "lng": 88.3639, "address": "Park Street, Kolkata"},
]

SAMPLE_DESCRIPTIONS = {
    "pothole": [
        "Large pothole in the middle of the road causing traffic issues",
        "Deep pothole near bus stop, very dangerous for two-wheelers",
    ],
    "garbage": [
        "Garbage dump overflowing onto the street",
        "Waste pile not collected for 3 days",
    ],
    "water_leakage": [
        "Water pipe burst, water flowing onto road",
        "Continuous water leakage for past 2 days",
    ],
    "streetlight": [
        "Streetlight not working for a week",
        "Flickering streetlight, very dim at night",
    ],
    "drainage": [
        "Drain blocked, water logging during rain",
        "Open drain cover is a safety hazard",
    ],
    "road_damage": [
        "Road surface damaged after recent rains",
        "Large cracks developing on the main road",
    ],
}

SAMPLE_IMAGE_URL = "https://res.cloudinary.com/demo/image/upload/sample.jpg"


def ensure_account(db, auth_service, User, name, email, password, role, department=None):
    """Create the account or reset its password/role if it exists"""
    user = auth_service.get_by_email(db, email)
    if user:
        user.password_hash = auth_service.hash_password(password)
        user.role = role
        user.department = department
        user.is_active = True
        db.commit()
        print(f"  Already exists, reset: {email}")
        return user

    user = User(
        name=name,
        email=email,
        password_hash=auth_service.hash_password(password),
        role=role,
        department=department,
        is_active=True
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    print(f"  Created: {email}")
    return user


def seed_database(
    admin_password: str = DEFAULT_ADMIN_PASSWORD,
    num_citizens: int = DEFAULT_NUM_CITIZENS,
    num_issues: int = 0,
    seed: int = 42
):
    """Main seeding function"""
    try:
        from civicsense.db.database import SessionLocal, init_db
        from civicsense.db.models import User
        from civicsense.services.auth_service import auth_service
        from civicsense.services.issue_service import issue_service
    except ImportError as e:
        print(f"Error importing database modules: {e}")
        print("Make sure you're running from the project root with dependencies installed.")
        sys.exit(1)

    random.seed(seed)

    print("=" * 60)
    print("CivicSense Database Seeder")
    print("=" * 60)

    init_db()
    db = SessionLocal()

    try:
        print("\n1. Admin account...")
        ensure_account(
            db, auth_service, User, "System Admin", DEFAULT_ADMIN_EMAIL,
            admin_password, "admin"
        )

        print("\n2. Department authority accounts...")
        authorities = [
            ensure_account(
                db, auth_service, User, account["name"], account["email"],
                admin_password, "authority", account["department"]
            )
            for account in AUTHORITY_ACCOUNTS
        ]

        if num_issues > 0:
            print(f"\n3. Seeding {num_citizens} citizens and {num_issues} issues...")
            citizens = [
                ensure_account(
                    db, auth_service, User, f"Citizen {i + 1}",
                    f"citizen{i + 1}@civicsense.com", "Citizen@2025", "citizen"
                )
                for i in range(num_citizens)
            ]

            for _ in range(num_issues):
                category = random.choice(list(SAMPLE_DESCRIPTIONS))
                location = random.choice(SAMPLE_LOCATIONS)
                reporter = random.choice(citizens)
                issue = issue_service.create(
                    db=db,
                    reporter=reporter,
                    latitude=location["lat"] + random.uniform(-0.01, 0.01),
                    longitude=location["lng"] + random.uniform(-0.01, 0.01),
                    description=random.choice(SAMPLE_DESCRIPTIONS[category]),
                    image_url=SAMPLE_IMAGE_URL,
                    category=category,
                    address=location["address"],
                    ai_confidence=random.randint(60, 95)
                )

                voters = [c for c in citizens if c.id != reporter.id]
                for voter in random.sample(voters, k=min(len(voters), random.randint(0, 4))):
                    issue_service.verify(db, issue.id, voter)

            print(f"  Created {num_issues} issues")

        print("\n" + "=" * 60)
        print("Database seeding complete!")
        print("=" * 60)
        print(f"""
Summary:
  - admin: {DEFAULT_ADMIN_EMAIL}
  - {len(authorities)} department authorities
  - {num_issues} demo issues
        """)

    except Exception as e:
        db.rollback()
        print(f"\nError during seeding: {e}")
        raise
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(
        description="Seed CivicSense database with staff accounts and demo data"
    )
    parser.add_argument(
        "--admin-password", "-p",
        default=DEFAULT_ADMIN_PASSWORD,
        help="Password for the admin and authority accounts"
    )
    parser.add_argument(
        "--citizens", "-u",
        type=int,
        default=DEFAULT_NUM_CITIZENS,
        help=f"Number of demo citizens (default: {DEFAULT_NUM_CITIZENS})"
    )
    parser.add_argument(
        "--demo-issues", "-i",
        type=int,
        default=0,
        help="Number of demo issues to create (default: 0)"
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed"
    )

    args = parser.parse_args()

    seed_database(
        admin_password=args.admin_password,
        num_citizens=args.citizens,
        num_issues=args.demo_issues,
        seed=args.seed
    )


if __name__ == "__main__":
    main()
