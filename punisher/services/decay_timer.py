import logging
import threading
from datetime import datetime, timedelta, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler


class DecayTimer:
    """
    Single-slot, one-shot timer used to drop the device back to baseline
    after a quiet period.

    arm() replaces whatever was armed before, so at most one decay is ever
    outstanding. Every arm hands out a token; the owner calls consume(token)
    when the callback runs and only acts if the token is still the live one.
    A firing that raced with a cancel or a re-arm is therefore harmless.
    """

    JOB_ID = "punishment_decay"

    def __init__(self, scheduler=None):
        self.scheduler = scheduler or BackgroundScheduler()
        self.logger = logging.getLogger("DecayTimer")
        self._lock = threading.Lock()
        self._token = 0
        self._armed_token = None

    def start(self):
        if not self.scheduler.running:
            self.scheduler.start()
            self.logger.debug("Decay scheduler started.")

    def arm(self, duration_seconds, callback):
        """
        Schedules callback(token) to run once, duration_seconds from now.
        Cancels any previously armed decay.
        """
        with self._lock:
            self._token += 1
            token = self._token
            self._armed_token = token
            run_date = datetime.now(timezone.utc) + timedelta(seconds=duration_seconds)
            self.scheduler.add_job(
                func=callback,
                trigger="date",
                run_date=run_date,
                args=[token],
                id=self.JOB_ID,
                replace_existing=True,
                misfire_grace_time=None,
            )
            return token

    def cancel(self):
        with self._lock:
            self._armed_token = None
            self._remove_job()

    def consume(self, token):
        """
        Marks the armed decay as fired.

        Returns:
            True if token belongs to the currently armed decay, False if it was
            cancelled or superseded in the meantime.
        """
        with self._lock:
            if token is None or token != self._armed_token:
                return False
            self._armed_token = None
            return True

    @property
    def pending(self):
        with self._lock:
            return self._armed_token is not None

    def _remove_job(self):
        try:
            self.scheduler.remove_job(self.JOB_ID)
        except JobLookupError:
            pass

    def shutdown(self):
        self.cancel()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
