"""Seed database with demo scheduling data and print dev access tokens."""
from fieldops.auth import create_access_token
from fieldops.database import Base, SessionLocal, engine
from fieldops.models import (
    Organization, Crew, User, Client, Job, JobMaterialAllocation, ScheduleAssignment
)
from datetime import date, timedelta
from decimal import Decimal
import uuid


def seed():
    """Seed database with demo data."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        # Create organization
        org = Organization(
            id=uuid.UUID('00000000-0000-0000-0000-000000000001'),
            name="Demo Field Services",
        )
        db.add(org)
        db.flush()

        crews = [
            Crew(id=uuid.UUID('00000000-0000-0000-0000-000000000301'), org_id=org.id, name="Crew North"),
            Crew(id=uuid.UUID('00000000-0000-0000-0000-000000000302'), org_id=org.id, name="Crew South"),
        ]
        db.add_all(crews)
        db.flush()

        # Create users
        users_data = [
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000101'),
                'email': 'admin@example.com',
                'name': 'Admin',
                'role': 'admin',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000102'),
                'email': 'scheduler@example.com',
                'name': 'Sam Scheduler',
                'role': 'scheduler',
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000103'),
                'email': 'lead.north@example.com',
                'name': 'Nora Lead',
                'role': 'crew_lead',
                'crew_id': crews[0].id,
            },
            {
                'id': uuid.UUID('00000000-0000-0000-0000-000000000104'),
                'email': 'installer.south@example.com',
                'name': 'Ivan Installer',
                'role': 'installer',
                'crew_id': crews[1].id,
            },
        ]
        users = [User(org_id=org.id, **user_data) for user_data in users_data]
        db.add_all(users)
        db.flush()

        client = Client(
            id=uuid.UUID('00000000-0000-0000-0000-000000000401'),
            org_id=org.id,
            display_name="Harbor View Apartments",
        )
        db.add(client)
        db.flush()

        jobs = [
            Job(
                id=uuid.UUID('00000000-0000-0000-0000-000000000501'),
                org_id=org.id,
                title="Window install - Unit 4B",
                status="scheduled",
                crew_id=crews[0].id,
                client_id=client.id,
                address="12 Harbor Rd",
            ),
            Job(
                id=uuid.UUID('00000000-0000-0000-0000-000000000502'),
                org_id=org.id,
                title="Site inspection - Lobby",
                status="new",
                crew_id=crews[1].id,
                client_id=client.id,
                address="12 Harbor Rd",
            ),
        ]
        db.add_all(jobs)
        db.flush()

        db.add_all([
            JobMaterialAllocation(
                org_id=org.id,
                job_id=jobs[0].id,
                material_id=uuid.UUID('00000000-0000-0000-0000-000000000601'),
                planned_quantity=Decimal("12"),
            ),
            JobMaterialAllocation(
                org_id=org.id,
                job_id=jobs[0].id,
                material_id=uuid.UUID('00000000-0000-0000-0000-000000000602'),
                planned_quantity=Decimal("2.5"),
            ),
        ])

        today = date.today()
        db.add_all([
            ScheduleAssignment(
                org_id=org.id,
                job_id=jobs[0].id,
                crew_id=crews[0].id,
                date=today,
                start_minutes=180,
                end_minutes=420,
                assignment_type="install",
                created_by=users[1].id,
            ),
            ScheduleAssignment(
                org_id=org.id,
                job_id=jobs[1].id,
                crew_id=crews[1].id,
                date=today + timedelta(days=1),
                start_minutes=60,
                end_minutes=120,
                assignment_type="inspection",
                start_at_hq=True,
                created_by=users[1].id,
            ),
        ])

        db.commit()
        print("✅ Database seeded successfully!")
        print("\nDev access tokens (orgId 00000000-0000-0000-0000-000000000001):")
        for user in users:
            token = create_access_token({"sub": str(user.id), "ver": user.token_version or 0})
            print(f"  {user.role:<10} {user.email}: {token}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding database: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
