"""Assign targeted vouchers to newly qualifying users.

Run periodically (cron or a scheduler of your choice):

    python -m mmart.scripts.process_voucher_assignments
"""

import logging
import sys

from mmart.core.config import settings
from mmart.core.database import SessionLocal
from mmart.core.deps import get_voucher_notifier
from mmart.core.observability import setup_logging
from mmart.models import Base  # noqa: F401 - register models
from mmart.services.voucher_assignment import process_assignments

logger = logging.getLogger("mmart.scripts.process_voucher_assignments")


def main() -> int:
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    db = SessionLocal()
    try:
        process_assignments(db, get_voucher_notifier())
    except Exception:
        logger.exception("Voucher assignment run failed")
        db.rollback()
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
