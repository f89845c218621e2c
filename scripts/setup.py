#!/usr/bin/env python3
"""Setup script for the booking engine: migrate and seed a demo organization."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from sqlalchemy import func, select

from booking_engine.core.clock import utcnow
from booking_engine.core.config import settings
from booking_engine.core.database import Database
from booking_engine.models import (
    Athlete,
    AthleteGuardian,
    EntitlementRule,
    EventTemplate,
    Membership,
    MembershipStatus,
    MembershipType,
    Organization,
    Package,
    PackageType,
    RestrictionTag,
    RuleScope,
    ScheduledEvent,
    SchedulingCategory,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_migrations() -> None:
    """Upgrade the schema to the latest Alembic revision."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data(database: Database) -> None:
    """Create one organization with a week of classes, an athlete and their entitlements."""
    logger.info("Creating sample data...")

    async with database.session_scope() as db:
        existing = await db.execute(select(func.count(Organization.id)))
        if existing.scalar_one() > 0:
            logger.info("Sample data already exists, skipping...")
            return

        org = Organization(name="Driveline Academy", slug="driveline-academy", refund_window_hours=24)
        db.add(org)
        await db.flush()

        medical = RestrictionTag(
            org_id=org.id,
            name="Medical clearance",
            description="Doctor's note on file for high-intent throwing",
        )
        hitting = SchedulingCategory(org_id=org.id, name="Hitting", color="#1f77b4")
        pitching = SchedulingCategory(org_id=org.id, name="Pitching", color="#d62728")
        db.add_all([medical, hitting, pitching])
        await db.flush()

        hitting_lab = EventTemplate(
            org_id=org.id,
            name="Hitting Lab",
            category_id=hitting.id,
            drop_in_price_cents=3500,
            hours_before_cutoff=2,
            max_days_ahead_open=14,
        )
        pitching_lab = EventTemplate(
            org_id=org.id,
            name="High-Intent Pitching",
            category_id=pitching.id,
            required_restriction_tag_ids=[str(medical.id)],
            drop_in_price_cents=None,
            hours_before_cutoff=12,
        )
        db.add_all([hitting_lab, pitching_lab])
        await db.flush()

        base = utcnow().replace(hour=17, minute=0, second=0, microsecond=0) + timedelta(days=1)
        for day in range(7):
            for template, capacity in ((hitting_lab, 8), (pitching_lab, 6)):
                start = base + timedelta(days=day, hours=0 if template is hitting_lab else 2)
                db.add(
                    ScheduledEvent(
                        org_id=org.id,
                        template_id=template.id,
                        title=template.name,
                        start_time=start,
                        end_time=start + timedelta(hours=1, minutes=30),
                        capacity=capacity,
                    )
                )

        unlimited_hitting = MembershipType(org_id=org.id, name="Unlimited Hitting")
        ten_pack = PackageType(org_id=org.id, name="10 Session Pack", uses=10, validity_days=90)
        db.add_all([unlimited_hitting, ten_pack])
        await db.flush()

        db.add_all([
            EntitlementRule(membership_type_id=unlimited_hitting.id, scope=RuleScope.CATEGORY.value, category_id=hitting.id),
            EntitlementRule(package_type_id=ten_pack.id, scope=RuleScope.ANY.value),
        ])

        athlete = Athlete(
            org_id=org.id,
            user_id="athlete-demo",
            first_name="Sam",
            last_name="Rivera",
            email="sam@example.com",
        )
        db.add(athlete)
        await db.flush()

        db.add_all([
            AthleteGuardian(guardian_user_id="parent-demo", athlete_id=athlete.id, relationship_label="parent"),
            Membership(
                athlete_id=athlete.id,
                membership_type_id=unlimited_hitting.id,
                status=MembershipStatus.ACTIVE.value,
                current_period_end=utcnow() + timedelta(days=30),
            ),
            Package(
                athlete_id=athlete.id,
                package_type_id=ten_pack.id,
                uses_remaining=10,
                uses_total=10,
                expiry_date=utcnow() + timedelta(days=90),
            ),
        ])

        await db.commit()
        logger.info("Sample data created successfully!")


async def main():
    """Main setup function."""
    logger.info("Starting booking engine setup...")

    # env.py runs its own event loop
    await asyncio.to_thread(run_migrations)

    database = Database(settings.database_url, timeout_seconds=settings.database_timeout_seconds)
    database.open()
    try:
        await create_sample_data(database)
    finally:
        await database.close()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn booking_engine.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
