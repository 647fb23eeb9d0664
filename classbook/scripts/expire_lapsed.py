"""
Background job for billing housekeeping

Marks pending payments past their grace period as overdue (with late fee)
and expires subscriptions whose period lapsed without renewal.
"""

import sys
from datetime import datetime
from typing import Optional

from sqlmodel import Session
import structlog

from classbook.core.database import engine
from classbook.core.timezone_utils import facility_now
from classbook.services.entitlements import expire_lapsed_subscriptions, mark_overdue_payments

logger = structlog.get_logger(__name__)


def run(session: Session, now: Optional[datetime] = None) -> dict:
    now = now or facility_now()
    return {
        "overdue_payments": mark_overdue_payments(session, now),
        "expired_subscriptions": expire_lapsed_subscriptions(session, now.date()),
    }


def main():
    """Main entry point for billing housekeeping job"""
    logger.info("Starting billing housekeeping job")

    try:
        with Session(engine) as session:
            results = run(session)
            logger.info(f"Billing housekeeping complete: {results}")
    except Exception as e:
        logger.error(f"Fatal error in billing housekeeping job: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
