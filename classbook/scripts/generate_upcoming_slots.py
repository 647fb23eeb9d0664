"""
Background job to keep slots generated ahead of time

Run periodically (e.g. daily via cron) so every active tenant always has
slots for the next ``SLOT_GENERATION_HORIZON_DAYS`` days. Generation is
idempotent, so overlapping runs only create what is missing.
"""

import sys
from datetime import date, timedelta
from typing import Optional

from sqlmodel import Session, select
import structlog

from classbook.core.config import get_settings
from classbook.core.database import engine
from classbook.core.exceptions import ConfigurationMissing
from classbook.core.timezone_utils import facility_today
from classbook.models.tenant import Tenant
from classbook.services.slot_capacity import generate_slots

logger = structlog.get_logger(__name__)


def generate_upcoming_slots(session: Session, today: Optional[date] = None) -> dict:
    """Generate slots for every active tenant across the horizon"""
    today = today or facility_today()
    end = today + timedelta(days=get_settings().SLOT_GENERATION_HORIZON_DAYS - 1)

    tenant_ids = session.exec(
        select(Tenant.id).where(Tenant.is_active == True)  # noqa: E712
    ).all()

    results = {"tenants": len(tenant_ids), "created_slots": 0, "skipped_tenants": 0}
    for tenant_id in tenant_ids:
        try:
            summary = generate_slots(session, tenant_id, today, end)
        except ConfigurationMissing:
            logger.info(f"Tenant {tenant_id} has no schedule configuration, skipped")
            results["skipped_tenants"] += 1
            continue
        results["created_slots"] += summary.created_slots

    return results


def main():
    """Main entry point for slot generation job"""
    logger.info("Starting slot generation job")

    try:
        with Session(engine) as session:
            results = generate_upcoming_slots(session)
            logger.info(f"Slot generation complete: {results}")
    except Exception as e:
        logger.error(f"Fatal error in slot generation job: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
