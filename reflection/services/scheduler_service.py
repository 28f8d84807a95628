"""
Reflection Waves
In-process interval scheduler for background engine work.

The only job today is ``wave_expiration_sweep`` (see scheduled_jobs.py),
which must run every WAVE_SWEEP_INTERVAL_SECONDS for expired waves to end
and their sessions to complete.

Run bookkeeping lives on the ScheduledJob row:
    - each run stamps last_run_* with the engine clock and the job's summary
    - a failed run flips the job to "failed" until the next success; the next
      tick retries, nothing is replayed
    - a run requested while the same job is still executing (the loop thread
      racing a manual ``run_job`` call) is recorded as "skipped"

``run_job`` is also the manual entry point for scripts and tests.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from reflection.models import db
from reflection.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Register ``fn(app) -> dict`` under ``name``."""
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _configured_interval(app: Flask, job_name: str) -> int:
    intervals = {
        "wave_expiration_sweep": app.config.get("WAVE_SWEEP_INTERVAL_SECONDS", 60),
    }
    return max(int(intervals.get(job_name, 60)), 1)


def _engine_now(app: Flask):
    collaborators = app.extensions.get("collaborators")
    if collaborators is not None:
        return collaborators.clock.now()
    return None


class SchedulerService:
    """Class-level singleton bound to one app by ``init_app``."""

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None
    _next_run: dict[str, float] = {}
    _running: dict[str, threading.Lock] = {}

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        cls._running = {name: threading.Lock() for name in _job_registry}
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound with jobs: %s", ", ".join(sorted(_job_registry)) or "none")

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create missing ScheduledJob rows and sync intervals with config.

        Returns the newly created rows.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                interval = _configured_interval(cls._app, name)
                job = ScheduledJob.query.filter_by(job_name=name).first()
                if job is None:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or name).strip(),
                        interval_seconds=interval,
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
                elif job.interval_seconds != interval:
                    logger.info("Interval for %s changed %ss -> %ss", name,
                                job.interval_seconds, interval, extra={"job_name": name})
                    job.interval_seconds = interval
            db.session.commit()
        if created:
            logger.info("Registered %d scheduled job(s)", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Execute one job now and record the outcome.

        Returns:
            {"job_name", "status": success|failed|skipped|error,
             "duration_ms", "result", "error"}
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        guard = cls._running.setdefault(job_name, threading.Lock())
        if not guard.acquire(blocking=False):
            logger.info("Job %s still running; skipped", job_name, extra={"job_name": job_name})
            cls._record(job_name, status="skipped", duration_ms=0, result=None, error=None)
            return {"job_name": job_name, "status": "skipped", "duration_ms": 0,
                    "result": None, "error": None}

        started = time.monotonic()
        result, error, status = None, None, "success"
        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status, error = "failed", str(exc)
            logger.exception("Job %s failed; retrying on next tick", job_name,
                             extra={"job_name": job_name})
        finally:
            guard.release()

        duration_ms = int((time.monotonic() - started) * 1000)
        cls._record(job_name, status=status, duration_ms=duration_ms,
                    result=result if isinstance(result, dict) else None, error=error)
        logger.debug("Job %s finished: %s", job_name, status,
                     extra={"job_name": job_name, "duration_ms": duration_ms})
        return {"job_name": job_name, "status": status, "duration_ms": duration_ms,
                "result": result, "error": error}

    @classmethod
    def _record(cls, job_name, *, status, duration_ms, result, error) -> None:
        try:
            with cls._app.app_context():
                job = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job is None:
                    return
                job.record_run(status=status, duration_ms=duration_ms, result=result,
                               error=error, ran_at=_engine_now(cls._app))
                if job.is_enabled and status in ("success", "failed"):
                    job.status = "active" if status == "success" else "failed"
                db.session.commit()
        except Exception:
            logger.exception("Could not record run of %s", job_name, extra={"job_name": job_name})

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Pause or resume a job. Returns the updated row, or None if unknown."""
        job = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job:
            return None
        job.is_enabled = enabled
        job.status = "active" if enabled else "paused"
        db.session.commit()
        logger.info("Job %s %s", job_name, "resumed" if enabled else "paused",
                    extra={"job_name": job_name})
        return job.to_dict()

    # ── Interval loop ─────────────────────────────────────────────────────

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def start(cls) -> bool:
        """Start the background loop. Returns False if already running."""
        if not cls._app or cls.is_running():
            return False
        cls._stop_event = threading.Event()
        cls._next_run = {}
        cls._thread = threading.Thread(target=cls._loop, name="reflection-scheduler",
                                       daemon=True)
        cls._thread.start()
        logger.info("Scheduler started")
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
            logger.info("Scheduler stopped")
        cls._thread = None

    @classmethod
    def run_due_jobs(cls) -> list[dict]:
        """Run every enabled job whose interval has elapsed."""
        now = time.monotonic()
        with cls._app.app_context():
            rows = {j.job_name: (j.is_enabled, j.interval_seconds)
                    for j in ScheduledJob.query.all()}
        ran = []
        for name in _job_registry:
            enabled, interval = rows.get(name, (True, _configured_interval(cls._app, name)))
            if not enabled or cls._next_run.get(name, 0.0) > now:
                continue
            cls._next_run[name] = now + max(int(interval or 1), 1)
            ran.append(cls.run_job(name))
        return ran

    @classmethod
    def _loop(cls) -> None:
        # Wake often enough to honour the shortest configured interval
        tick = min([5] + [_configured_interval(cls._app, name) for name in _job_registry])
        while not cls._stop_event.is_set():
            try:
                cls.run_due_jobs()
            except Exception:
                logger.exception("Scheduler tick failed")
            cls._stop_event.wait(tick)
