import atexit
from apscheduler.schedulers.background import BackgroundScheduler
from xpreview.services.ai_evaluation_queue import AiEvaluationQueue
from xpreview.services.deadline_monitor_service import DeadlineMonitorService
from xpreview.services.weekly_reset_service import WeeklyResetService
from config.config import Config
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)


def run_ai_queue(queue: AiEvaluationQueue = None):
    try:
        (queue or AiEvaluationQueue()).process_queue()
    except Exception as e:
        logger.error(f"AI queue job failed: {str(e)}")


def run_deadline_monitor(monitor: DeadlineMonitorService = None):
    try:
        (monitor or DeadlineMonitorService()).process_deadlines()
    except Exception as e:
        logger.error(f"Deadline monitor job failed: {str(e)}")


def run_weekly_reset(reset_service: WeeklyResetService = None):
    try:
        (reset_service or WeeklyResetService()).process_weekly_reset()
    except Exception as e:
        logger.error(f"Weekly reset job failed: {str(e)}")


def start_scheduler(queue: AiEvaluationQueue = None, monitor: DeadlineMonitorService = None,
                    reset_service: WeeklyResetService = None) -> BackgroundScheduler:
    """Run the AI queue, deadline monitor and weekly reset in the background of this process"""
    queue = queue or AiEvaluationQueue()
    monitor = monitor or DeadlineMonitorService()
    reset_service = reset_service or WeeklyResetService()

    scheduler = BackgroundScheduler(job_defaults={'coalesce': True, 'max_instances': 1})
    scheduler.add_job(
        run_ai_queue,
        'interval',
        minutes=Config.AI_QUEUE_INTERVAL_MINUTES,
        args=[queue],
        id='ai_evaluation_queue'
    )
    scheduler.add_job(
        run_deadline_monitor,
        'interval',
        minutes=Config.DEADLINE_MONITOR_INTERVAL_MINUTES,
        args=[monitor],
        id='deadline_monitor'
    )
    scheduler.add_job(
        run_weekly_reset,
        'cron',
        day_of_week='mon',
        hour=Config.WEEKLY_RESET_HOUR,
        minute=Config.WEEKLY_RESET_MINUTE,
        timezone='UTC',
        args=[reset_service],
        id='weekly_reset'
    )
    scheduler.start()
    atexit.register(lambda: scheduler.shutdown(wait=False))

    logger.info(
        f"Scheduler started: AI queue every {Config.AI_QUEUE_INTERVAL_MINUTES}m, "
        f"deadlines every {Config.DEADLINE_MONITOR_INTERVAL_MINUTES}m, weekly reset Mondays "
        f"{Config.WEEKLY_RESET_HOUR:02d}:{Config.WEEKLY_RESET_MINUTE:02d} UTC"
    )
    return scheduler
