"""
Background refresh of stale recommendations.

A periodic sweep (APScheduler interval job) regenerates every record whose
``next_update`` has passed, and ``check_and_update`` does the same inline for
one user. Both paths share a per-user lock so a user is never generated twice
at the same time.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Iterator, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mangarec.config import get_settings
from mangarec.errors import GenerationCancelledError
from mangarec.models import utcnow
from mangarec.schemas import RecommendationRecord
from mangarec.services.recommendation_engine import RecommendationEngine
from mangarec.services.recommendation_store import RecommendationStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    refreshed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    stopped: bool = False


@dataclass
class _UserLock:
    lock: Lock = field(default_factory=Lock)
    holders: int = 0


class RecommendationScheduler:
    JOB_ID = "recommendation_sweep"

    def __init__(
        self,
        engine: Optional[RecommendationEngine] = None,
        store: Optional[RecommendationStore] = None,
    ):
        self.settings = get_settings()
        self.store = store or (engine.store if engine is not None else RecommendationStore())
        self.engine = engine or RecommendationEngine(store=self.store)
        self._user_locks: Dict[str, _UserLock] = {}
        self._user_locks_lock = Lock()
        self._report_lock = Lock()
        self._stop_event = threading.Event()
        self._stopping = False
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    def check_and_update(self, user_id: str) -> bool:
        """Regenerate inline when the user has no record or a stale one. Returns whether it ran."""
        if not self._needs_update(user_id, utcnow()):
            logger.info("Recommendations are up to date for user %s", user_id)
            return False

        with self._user_lock(user_id):
            # Another caller may have refreshed the record while we waited.
            if not self._needs_update(user_id, utcnow()):
                return False
            logger.info("Recommendations need update for user %s", user_id)
            self.engine.update_user_recommendations(user_id)
            return True

    def refresh(self, user_id: str) -> RecommendationRecord:
        with self._user_lock(user_id):
            return self.engine.update_user_recommendations(user_id)

    def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = now or utcnow()
        if not self._stopping:
            # A stop requested during an earlier sweep only applied to that sweep.
            self._stop_event.clear()
        user_ids = self.store.list_stale(now)
        logger.info("Found %d users needing recommendation updates", len(user_ids))

        report = SweepReport()
        workers = max(1, self.settings.sweep_workers)
        if workers == 1:
            for user_id in user_ids:
                if self._stop_event.is_set():
                    report.stopped = True
                    break
                self._sweep_user(user_id, now, report)
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = [executor.submit(self._sweep_user, user_id, now, report) for user_id in user_ids]
                for future in futures:
                    future.result()

        logger.info(
            "Recommendation sweep finished: %d refreshed, %d skipped, %d failed",
            len(report.refreshed),
            len(report.skipped),
            len(report.failed),
        )
        return report

    def start(self) -> None:
        if self._scheduler is not None:
            logger.warning("Recommendation scheduler already running")
            return

        logger.info("Starting recommendation scheduler")
        self._stop_event.clear()
        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._scheduled_sweep,
            trigger=IntervalTrigger(hours=self.settings.sweep_interval_hours),
            id=self.JOB_ID,
            name="Refresh stale recommendations",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()

    def request_stop(self) -> None:
        """Stop the current sweep after the user in progress and cancel its inference call.

        The next sweep starts normally unless ``stop()`` is shutting the scheduler down.
        """
        self._stop_event.set()

    def stop(self) -> None:
        self._stopping = True
        self.request_stop()
        try:
            if self._scheduler is not None:
                logger.info("Stopping recommendation scheduler")
                self._scheduler.shutdown(wait=True)
        finally:
            self._scheduler = None
            self._stopping = False
            self._stop_event.clear()

    def _scheduled_sweep(self) -> None:
        try:
            self.run_sweep()
        except Exception:
            logger.exception("Scheduled recommendation sweep failed")

    def _sweep_user(self, user_id: str, now: datetime, report: SweepReport) -> None:
        if self._stop_event.is_set():
            with self._report_lock:
                report.stopped = True
                report.skipped.append(user_id)
            return

        with self._user_lock(user_id):
            try:
                if not self._needs_update(user_id, now):
                    with self._report_lock:
                        report.skipped.append(user_id)
                    return
                self.engine.update_user_recommendations(user_id, cancel_event=self._stop_event)
            except GenerationCancelledError:
                logger.info("Sweep cancelled while updating user %s", user_id)
                with self._report_lock:
                    report.stopped = True
                    report.skipped.append(user_id)
                return
            except Exception as exc:
                logger.exception("Error updating recommendations for user %s", user_id)
                with self._report_lock:
                    report.failed[user_id] = str(exc)
                return

        with self._report_lock:
            report.refreshed.append(user_id)

    def _needs_update(self, user_id: str, now: datetime) -> bool:
        record = self.store.read(user_id)
        return record is None or record.next_update <= now

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        """Hold the per-user lock; the entry is dropped once nobody holds or waits on it."""
        with self._user_locks_lock:
            entry = self._user_locks.get(user_id)
            if entry is None:
                entry = self._user_locks[user_id] = _UserLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._user_locks_lock:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._user_locks[user_id]


recommendation_scheduler = RecommendationScheduler()
