"""
Background scheduler for goal and league rollover.
Handles:
- Daily goal rollover (skip days are consumed here)
- Closing expired league sessions and starting the next ones
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from recycleit.database import SessionLocal
from recycleit.repositories.settings_repository import SettingsRepository
from recycleit.services.goal_service import GoalService
from recycleit.services.league_service import LeagueService

logger = logging.getLogger("recycleit.scheduler")

# Jobs run in worker threads with their own sync DB sessions
scheduler = BackgroundScheduler()


def run_goal_rollover():
    """Job: roll over goals whose check date arrived"""
    db = SessionLocal()
    try:
        settings = SettingsRepository.get(db)
        if not settings.auto_rollover_enabled:
            return

        result = GoalService(db).rollover_goals()
        logger.info(
            f"Goal rollover: {len(result.deactivated)} deactivated, "
            f"{len(result.activated)} activated, {len(result.postponed)} postponed"
        )
    except Exception as e:
        logger.error(f"Scheduler Error (Goal Rollover): {e}")
    finally:
        db.close()


def run_league_rollover():
    """Job: close expired sessions, then start sessions for placed users"""
    db = SessionLocal()
    try:
        settings = SettingsRepository.get(db)
        if not settings.auto_league_rollover_enabled:
            return

        league_service = LeagueService(db)
        closed = league_service.close_expired_sessions()
        started = league_service.start_next_sessions()
        logger.info(
            f"League rollover: {len(closed)} sessions closed, {len(started)} sessions started"
        )
    except Exception as e:
        logger.error(f"Scheduler Error (League Rollover): {e}")
    finally:
        db.close()


def start_scheduler():
    """Start the scheduler"""
    if not scheduler.running:
        scheduler.add_job(
            run_goal_rollover,
            CronTrigger(hour=0, minute=5),
            id='goal_rollover',
            replace_existing=True
        )

        scheduler.add_job(
            run_league_rollover,
            CronTrigger(hour=0, minute=15),
            id='league_rollover',
            replace_existing=True
        )

        scheduler.start()
        logger.info(">>> APScheduler STARTED <<<")
        logger.info(f"Scheduled jobs: {[job.id for job in scheduler.get_jobs()]}")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")
