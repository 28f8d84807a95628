"""
Commit helper shared by the engine services.

Transaction policy: every public service operation is one unit of work and
commits it before returning. Any failure rolls the whole unit back.
"""

import logging

from sqlalchemy.exc import IntegrityError

from reflection.core.exceptions import InvalidStateError
from reflection.models import db

logger = logging.getLogger(__name__)


def commit_unit(action: str) -> None:
    """Commit the current session; map unique-index races to InvalidStateError.

    The partial unique indexes on ``affirmations.is_selected`` and
    ``waves.is_active`` are the last line of the single-selected and
    single-active rules. A concurrent writer that slips past the row lock
    surfaces here as an IntegrityError.
    """
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity violation during %s: %s", action, exc.orig)
        raise InvalidStateError(f"Cannot {action}: conflicting concurrent update") from exc
    except Exception:
        db.session.rollback()
        raise
