"""
Planificateur process-wide du moteur de réapprovisionnement.

Initialisé une fois au démarrage du process (lifespan FastAPI). Un second
appel à init_scheduler() ne crée pas de second timer. Les runs planifiés
peuvent chevaucher un trigger HTTP : la sûreté repose sur l'index unique des
lignes de commande, pas sur ce module.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

import schedule

from backend.app.core.config import settings
from backend.app.db.session import SessionLocal
from backend.app.schemas.replenishment import RunResult
from backend.services.replenishment import ReplenishmentRunner

logger = logging.getLogger(__name__)


def run_scheduled_replenishment() -> RunResult:
    db = SessionLocal()
    try:
        result = ReplenishmentRunner(db).run()
    finally:
        db.close()
    logger.info("Scheduled replenishment finished: %s", result.message)
    return result


class ReplenishmentScheduler:
    """
    Job quotidien `schedule` (hour:minute, heure du fuseau donné) sur une
    instance Scheduler privée, pompé par un thread daemon.
    """

    def __init__(
        self,
        job: Callable[[], object],
        *,
        hour: int = 3,
        minute: int = 0,
        timezone_name: str = "Europe/Madrid",
        poll_seconds: float = 30.0,
    ):
        self.job = job
        self.poll_seconds = poll_seconds
        self.scheduler = schedule.Scheduler()
        self.daily_job = (
            self.scheduler.every().day.at(f"{hour:02d}:{minute:02d}", timezone_name).do(self.run_once)
        )
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_run(self) -> datetime | None:
        # datetime naïf, heure locale de la machine (convention de `schedule`)
        return self.scheduler.next_run

    def start(self) -> bool:
        with self._lock:
            if self.running:
                return False
            self._stop.clear()
            self._thread = threading.Thread(target=self._loop, name="replenishment-scheduler", daemon=True)
            self._thread.start()
            return True

    def stop(self, timeout: float = 5.0) -> bool:
        """
        Demande l'arrêt et attend le thread. Renvoie False si un run est encore
        en cours après `timeout` : le thread reste référencé, start() refusera
        d'en lancer un second.
        """
        self._stop.set()
        with self._lock:
            thread = self._thread
        if thread is None:
            return True

        thread.join(timeout)
        if thread.is_alive():
            logger.warning("Replenishment scheduler still busy after %.1fs, not released", timeout)
            return False

        with self._lock:
            if self._thread is thread:
                self._thread = None
        return True

    def run_once(self) -> None:
        logger.info("Running scheduled task: generate replenishment orders")
        try:
            self.job()
        except Exception:
            # un tick en échec ne doit pas arrêter le timer
            logger.exception("Scheduled replenishment run failed")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.scheduler.run_pending()
            self._stop.wait(self.poll_seconds)


_scheduler: ReplenishmentScheduler | None = None
_init_lock = threading.Lock()


def init_scheduler(job: Callable[[], object] | None = None) -> ReplenishmentScheduler | None:
    """Idempotent : renvoie le planificateur existant s'il est déjà démarré."""
    global _scheduler
    with _init_lock:
        if _scheduler is not None:
            logger.info("Replenishment scheduler already initialized, skipping")
            return _scheduler

        if not settings.SCHEDULER_ENABLED:
            logger.warning("Replenishment scheduler disabled by configuration")
            return None

        scheduler = ReplenishmentScheduler(
            job or run_scheduled_replenishment,
            hour=settings.SCHEDULER_HOUR,
            minute=settings.SCHEDULER_MINUTE,
            timezone_name=settings.SCHEDULER_TIMEZONE,
        )
        scheduler.start()
        _scheduler = scheduler
        logger.info("Replenishment scheduler initialized, next run at %s", scheduler.next_run)
        return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    with _init_lock:
        if _scheduler is not None and _scheduler.stop():
            _scheduler = None
