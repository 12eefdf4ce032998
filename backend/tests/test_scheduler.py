import logging
import threading
from datetime import datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from backend.app.core.config import settings
from backend.services import scheduler as scheduler_module
from backend.services.scheduler import ReplenishmentScheduler, init_scheduler, shutdown_scheduler


def _noop():
    return None


@pytest.fixture
def clean_scheduler():
    shutdown_scheduler()
    yield
    shutdown_scheduler()


def test_daily_job_registered_at_local_time():
    sched = ReplenishmentScheduler(_noop, hour=3, minute=0, timezone_name="Europe/Madrid")
    job = sched.daily_job

    assert job.unit == "days"
    assert job.interval == 1
    assert job.at_time == time(3, 0)
    assert str(job.at_time_zone) == "Europe/Madrid"
    assert sched.scheduler.get_jobs() == [job]


def test_next_run_is_next_madrid_3am():
    sched = ReplenishmentScheduler(_noop, hour=3, minute=0, timezone_name="Europe/Madrid")

    # next_run : naïf, heure locale de la machine
    nxt = sched.next_run
    local = nxt.astimezone(ZoneInfo("Europe/Madrid"))

    assert (local.hour, local.minute) == (3, 0)
    assert timedelta(0) < nxt - datetime.now() <= timedelta(hours=25)


def test_custom_hour_and_minute():
    sched = ReplenishmentScheduler(_noop, hour=22, minute=30, timezone_name="Pacific/Tahiti")

    local = sched.next_run.astimezone(ZoneInfo("Pacific/Tahiti"))

    assert (local.hour, local.minute) == (22, 30)


def test_pending_job_goes_through_run_once():
    calls = []
    sched = ReplenishmentScheduler(lambda: calls.append("run"), timezone_name="UTC")

    sched.scheduler.run_all()

    assert calls == ["run"]


def test_run_once_logs_and_survives_job_failure(caplog):
    def failing_job():
        raise RuntimeError("boom")

    sched = ReplenishmentScheduler(failing_job, timezone_name="UTC")

    with caplog.at_level(logging.ERROR, logger="backend.services.scheduler"):
        sched.scheduler.run_all()

    assert "Scheduled replenishment run failed" in caplog.text
    assert "boom" in caplog.text
    assert sched.scheduler.get_jobs() == [sched.daily_job]


def test_start_is_not_reentrant():
    sched = ReplenishmentScheduler(_noop, timezone_name="UTC", poll_seconds=0.01)
    try:
        assert sched.start() is True
        assert sched.start() is False
        assert sched.running
    finally:
        assert sched.stop() is True
    assert not sched.running


def test_stop_keeps_thread_while_a_run_is_in_progress():
    """
    GIVEN
    - un run planifié bloqué en cours d'exécution

    THEN
    - stop() expiré renvoie False, le thread reste référencé
    - start() refuse de lancer une seconde boucle
    - une fois le run terminé, stop() libère le thread
    """
    started = threading.Event()
    release = threading.Event()

    def slow_job():
        started.set()
        release.wait(5)

    sched = ReplenishmentScheduler(slow_job, timezone_name="UTC", poll_seconds=0.01)
    # force l'échéance à chaque tour de boucle
    sched.scheduler.run_pending = sched.scheduler.run_all

    try:
        sched.start()
        assert started.wait(2)

        assert sched.stop(timeout=0.05) is False
        assert sched.running
        assert sched.start() is False
    finally:
        release.set()

    assert sched.stop(timeout=5) is True
    assert not sched.running


def test_init_scheduler_is_idempotent(monkeypatch, clean_scheduler):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", True)

    first = init_scheduler(_noop)
    second = init_scheduler(_noop)

    assert first is not None
    assert first is second
    assert first.running
    assert scheduler_module._scheduler is first
    assert len(first.scheduler.get_jobs()) == 1


def test_init_scheduler_disabled(monkeypatch, clean_scheduler):
    monkeypatch.setattr(settings, "SCHEDULER_ENABLED", False)

    assert init_scheduler(_noop) is None
    assert scheduler_module._scheduler is None
