#!/usr/bin/env python3
"""
Cron entry point for deployments that do not run the in-process scheduler.
Drains the AI evaluation queue, runs one deadline monitor pass and closes out
the previous week once a new one has started.

Run every 15 minutes: */15 * * * * /path/to/venv/bin/python /path/to/run_review_cron.py
"""

import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xpreview.services.ai_evaluation_queue import AiEvaluationQueue
from xpreview.services.deadline_monitor_service import DeadlineMonitorService
from xpreview.services.weekly_reset_service import WeeklyResetService
from xpreview.utils.logger import get_logger
from xpreview.database import init_db
from datetime import datetime

logger = get_logger('xpreview.cron')


def main():
    logger.info(f"Starting review cron job at {datetime.utcnow()}")

    try:
        init_db()

        queue_result = AiEvaluationQueue().process_queue()
        logger.info(f"AI queue: {queue_result}")

        deadline_result = DeadlineMonitorService().process_deadlines()
        logger.info(
            f"Deadlines: {deadline_result['penalties']} penalties, "
            f"{deadline_result['reassignments']} reassignments, {len(deadline_result['errors'])} errors"
        )

        reset_result = WeeklyResetService().process_weekly_reset()
        logger.info(f"Weekly reset: {reset_result['users_reset']} users reset")

        logger.info("Review cron job completed successfully")

    except Exception as e:
        logger.error(f"Error in review cron job: {str(e)}")
        raise


if __name__ == "__main__":
    main()
