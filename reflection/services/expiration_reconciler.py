"""
Reflection Waves
Expiration Reconciler.

Periodic sweep (``wave_expiration_sweep``, every WAVE_SWEEP_INTERVAL_SECONDS)
that ends expired waves and completes their sessions:

    1. find active waves with end_date <= now (exit early if none)
    2. lock the owning sessions (SKIP LOCKED: a session busy in a client
       request is left for the next tick, together with its waves)
    3. deactivate the expired waves in one batch
    4. complete every locked session not already COMPLETED in one batch
       and bump each owner's completed_sessions counter
    5. commit, then emit one completion notification per session

Steps 3-4 are one transaction. Step 5 runs after the commit and each
notification is isolated: a failure is logged and never undoes a completion.
Filters on is_active / status make repeated or overlapping sweeps no-ops.
"""

import logging
from collections import Counter

from sqlalchemy import select, update

from reflection.models import db
from reflection.models.session import COMPLETED, ReflectionSession, Wave
from reflection.models.user import User
from reflection.services.collaborators import get_collaborators

logger = logging.getLogger(__name__)


def sweep_expired_waves(*, clock=None) -> dict:
    """Run one reconciliation pass. Returns counts for the job history."""
    clock = clock or get_collaborators().clock
    now = clock.now()
    results = {"expired_waves": 0, "completed_sessions": 0, "deferred_sessions": 0,
               "notifications_sent": 0, "notification_errors": 0}

    expired = db.session.execute(
        select(Wave.id, Wave.session_id).where(
            Wave.is_active.is_(True),
            Wave.end_date <= now,
        )
    ).all()
    if not expired:
        return results

    candidate_ids = {row.session_id for row in expired}
    locked = db.session.execute(
        select(ReflectionSession.id, ReflectionSession.user_id, ReflectionSession.status)
        .where(ReflectionSession.id.in_(candidate_ids))
        .with_for_update(skip_locked=True)
    ).all()
    locked_ids = {row.id for row in locked}
    results["deferred_sessions"] = len(candidate_ids - locked_ids)
    if not locked_ids:
        db.session.rollback()
        return results

    wave_ids = [row.id for row in expired if row.session_id in locked_ids]
    to_complete = [row for row in locked if row.status != COMPLETED]

    try:
        results["expired_waves"] = db.session.execute(
            update(Wave)
            .where(Wave.id.in_(wave_ids), Wave.is_active.is_(True))
            .values(is_active=False, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount

        if to_complete:
            results["completed_sessions"] = db.session.execute(
                update(ReflectionSession)
                .where(
                    ReflectionSession.id.in_([row.id for row in to_complete]),
                    ReflectionSession.status != COMPLETED,
                )
                .values(status=COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount

            per_user = Counter(row.user_id for row in to_complete)
            for user_id, increment in per_user.items():
                db.session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(completed_sessions=User.completed_sessions + increment)
                    .execution_options(synchronize_session=False)
                )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Expired %d wave(s), completed %d session(s)",
                results["expired_waves"], results["completed_sessions"],
                extra={"job_name": "wave_expiration_sweep"})

    _emit_completions(to_complete, results)
    return results


def _emit_completions(completed_rows, results):
    """Best-effort completion notifications; the state change is already committed."""
    from reflection.services.notification import NotificationService

    for row in completed_rows:
        try:
            user = db.session.get(User, row.user_id)
            NotificationService.notify_session_completed(
                user_id=row.user_id,
                session_id=row.id,
                total_completed_sessions=user.completed_sessions if user else 0,
            )
            results["notifications_sent"] += 1
        except Exception:
            db.session.rollback()
            results["notification_errors"] += 1
            logger.exception("Completion notification failed for session %s", row.id,
                             extra={"user_id": row.user_id, "session_id": row.id})
