"""Seed database with demo data."""
from vhc.database import SessionLocal
from vhc.models import (
    Organization, User, Customer, HealthCheck, CheckResult, MriScanResult
)
from vhc.auth import create_access_token
from datetime import timedelta
import uuid

def seed():
    """Seed database with demo data."""
    db = SessionLocal()

    try:
        # Create organization
        org = Organization(
            id=uuid.UUID('00000000-0000-0000-0000-000000000001'),
            name="Demo Motors",
            code="DEMO"
        )
        db.add(org)
        db.flush()

        # Create users
        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'email': 'admin@demo.local',
                'name': 'Alex Admin',
                'initials': 'AA',
                'role': 'org_admin'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'email': 'advisor@demo.local',
                'name': 'Sam Advisor',
                'initials': 'SA',
                'role': 'service_advisor'
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'email': 'tech@demo.local',
                'name': 'Terry Technician',
                'initials': 'TT',
                'role': 'technician'
            },
        ]
        users = []
        for user_data in users_data:
            user = User(org_id=org.id, **user_data)
            db.add(user)
            users.append(user)

        customer = Customer(
            org_id=org.id,
            first_name="Jordan",
            last_name="Driver",
            email="jordan@example.com",
            mobile="+447700900123",
        )
        db.add(customer)
        db.flush()

        health_check = HealthCheck(
            org_id=org.id,
            customer_id=customer.id,
            advisor_id=users[1].id,
            vehicle_registration="AB12 CDE",
            status="awaiting_arrival",
        )
        db.add(health_check)
        db.flush()

        results_data = [
            {'item_name': 'Brake pads', 'vehicle_location_name': 'Front', 'rag_status': 'red',
             'value': {'thicknessMm': 2}, 'notes': 'Below legal minimum'},
            {'item_name': 'Tyre tread', 'vehicle_location_name': 'Rear Left', 'rag_status': 'amber',
             'value': {'depthMm': 2.5}},
            {'item_name': 'Wipers', 'rag_status': 'green', 'value': {'ok': True}},
        ]
        for result_data in results_data:
            db.add(CheckResult(health_check_id=health_check.id, **result_data))

        db.add(MriScanResult(
            org_id=org.id,
            health_check_id=health_check.id,
            item_name='Timing belt',
            sales_description='Manufacturer recommends timing belt replacement',
            rag_status='amber',
        ))

        db.commit()
        print("✅ Database seeded successfully!")
        print(f"\nDemo health check: {health_check.id}")
        print("\nDemo access tokens (valid 30 days):")
        for user in users:
            token = create_access_token({"sub": str(user.id), "ver": 0}, expires_delta=timedelta(days=30))
            print(f"  {user.role}: {token}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
