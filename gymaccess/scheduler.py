"""
Cron-style scheduling of the reconciliation jobs.

Triggers are evaluated in the gym's local timezone. A failed run is logged
and left for the next trigger; nothing is retried immediately.
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from gymaccess import db
from gymaccess.clock import get_clock, local_tz
from gymaccess.services.jobs import JOBS, build_job, job_schedule

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Runs registered jobs on their crontab schedules inside an app context"""

    def __init__(self, app, job_names=None):
        self.app = app
        self.job_names = list(job_names or JOBS)
        self.tz = local_tz(app)
        self._scheduler = None

    def run_job(self, name, now=None):
        """
        Run one job immediately.

        Returns:
            JobResult, or None if the run failed
        """
        with self.app.app_context():
            job = build_job(name)
            now = now or get_clock().now()
            try:
                result = job.run(now)
            except Exception as e:
                db.session.rollback()
                logger.exception(f"Error in job '{name}': {e}")
                return None
            finally:
                db.session.remove()
            return result

    def start(self):
        if self._scheduler is not None and self._scheduler.running:
            return self._scheduler

        self._scheduler = BackgroundScheduler(timezone=self.tz)
        for name in self.job_names:
            expr = job_schedule(name, self.app.config)
            self._scheduler.add_job(
                self.run_job,
                CronTrigger.from_crontab(expr, timezone=self.tz),
                args=[name],
                id=name,
                name=name,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )
            logger.info(f"Scheduled job '{name}' ({expr})")

        self._scheduler.start()
        logger.info(f"All scheduled jobs started successfully (Timezone: {self.tz.key})")
        return self._scheduler

    def shutdown(self, wait=False):
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("All scheduled jobs stopped")
        self._scheduler = None

    def get_jobs(self):
        return self._scheduler.get_jobs() if self._scheduler else []
