"""
NHL Pick'em background scheduler

Periodically triggers the idempotent operations: game status refresh,
player performance sync, settlement of finished games, and the daily
roster/schedule sync. Running any job twice is harmless.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pickem import db
from pickem.services import game_sync_service, settlement_service

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages background jobs for status refresh, stat sync and settlement"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.source = None
        self.is_running = False
        self.sync_stats = {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "last_error": None,
            "games_settled": 0,
        }

        if app:
            self.init_app(app)

    def init_app(self, app, source=None):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        with app.app_context():
            self.source = source or settlement_service.default_source()

        atexit.register(self.shutdown)

        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        if self.is_running:
            return

        try:
            self.scheduler.remove_all_jobs()
            self._add_core_jobs()
            self.scheduler.start()
            self.is_running = True
            logger.info("Scheduler started successfully")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        if not self.is_running:
            return

        self.scheduler.shutdown(wait=False)
        self.is_running = False
        logger.info("Scheduler stopped")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        status_minutes = self.app.config.get("STATUS_REFRESH_MINUTES", 5)
        settlement_minutes = self.app.config.get("SETTLEMENT_INTERVAL_MINUTES", 15)

        self.scheduler.add_job(
            func=self._refresh_game_status,
            trigger=IntervalTrigger(minutes=status_minutes),
            id="refresh_game_status",
            name="Refresh Game Status",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        self.scheduler.add_job(
            func=self._sync_player_performance,
            trigger=IntervalTrigger(minutes=status_minutes),
            id="sync_player_performance",
            name="Sync Player Performance",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )

        self.scheduler.add_job(
            func=self._settle_pending_games,
            trigger=IntervalTrigger(minutes=settlement_minutes),
            id="settle_pending_games",
            name="Settle Finished Games",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        # Daily roster and schedule refresh (10 AM UTC, before any puck drop)
        self.scheduler.add_job(
            func=self._daily_sync,
            trigger=CronTrigger(hour=10, minute=0),
            id="daily_sync",
            name="Daily Roster and Schedule Sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

        logger.info("Core scheduled jobs added")

    def _run(self, job_name, func):
        """Run one job inside an app context and record the outcome"""
        with self.app.app_context():
            try:
                result = func()
                self._update_stats(True)
                return result
            except Exception as e:
                db.session.rollback()
                self._update_stats(False)
                self.sync_stats["last_error"] = str(e)
                logger.error(f"Error in {job_name}: {e}", exc_info=True)
                return None

    def _refresh_game_status(self):
        result = self._run(
            "game status refresh",
            lambda: game_sync_service.refresh_game_status(source=self.source),
        )
        if result and result["updated"]:
            logger.info(f"Status refresh updated {len(result['updated'])} games")
        return result

    def _sync_player_performance(self):
        return self._run(
            "performance sync",
            lambda: game_sync_service.sync_player_performance(source=self.source),
        )

    def _settle_pending_games(self):
        result = self._run(
            "settlement",
            lambda: settlement_service.settle_pending_games(source=self.source),
        )
        if result:
            self.sync_stats["games_settled"] += len(result["settled"])
        return result

    def _daily_sync(self):
        def sync():
            roster = game_sync_service.sync_roster(source=self.source)
            schedule = game_sync_service.sync_schedule(source=self.source)
            return {"roster": roster, "schedule": schedule}

        return self._run("daily sync", sync)

    def _update_stats(self, success):
        self.sync_stats["last_run"] = datetime.now(timezone.utc)
        self.sync_stats["total_runs"] += 1

        if success:
            self.sync_stats["successful_runs"] += 1
            self.sync_stats["last_error"] = None
        else:
            self.sync_stats["failed_runs"] += 1

    def get_status(self):
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        stats = dict(self.sync_stats)
        if stats["last_run"]:
            stats["last_run"] = stats["last_run"].isoformat()
        return {"is_running": self.is_running, "jobs": jobs, "stats": stats}

    def force_run(self, job="status"):
        """Manually trigger a job by name"""
        jobs = {
            "status": self._refresh_game_status,
            "performance": self._sync_player_performance,
            "settle": self._settle_pending_games,
            "daily": self._daily_sync,
        }
        if job not in jobs:
            raise ValueError(f"Unknown job: {job}")
        return jobs[job]()


# Global scheduler instance
scheduler_service = SchedulerService()
