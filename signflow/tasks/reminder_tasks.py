"""Scheduled reminder sweep.

Meant to be run by cron (``signflow-reminders``) or any scheduler. Each run
records the due reminders in one transaction and only emails the recipients
once that transaction has committed.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

from signflow.database import get_db_context
from signflow.services.notifications import SignatureNotifier
from signflow.services.progress_service import ProgressService

logger = logging.getLogger(__name__)


def run_reminder_sweep(
    now: Optional[datetime] = None,
    notifier: Optional[SignatureNotifier] = None,
) -> Dict[str, Any]:
    """
    Remind every recipient whose last notification is older than the
    configured interval.

    Returns:
        Dictionary with reminded, delivered and failed counts
    """
    start_time = time.time()

    with get_db_context() as session:
        intents = ProgressService(session).send_due_reminders(now)

    results = asyncio.run((notifier or SignatureNotifier()).notify_all(intents))
    delivered = sum(1 for r in results if r.success)

    summary = {
        "reminded": len(intents),
        "delivered": delivered,
        "failed": len(results) - delivered,
        "duration_seconds": round(time.time() - start_time, 3),
    }
    logger.info(f"Reminder sweep finished: {summary}")
    return summary


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    run_reminder_sweep()


if __name__ == "__main__":
    main()
