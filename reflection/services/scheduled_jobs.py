"""
Reflection Waves
Scheduled Jobs.

Jobs:
    - wave_expiration_sweep: ends expired waves and completes their sessions
"""

from __future__ import annotations

import logging
from typing import Any

from reflection.services.expiration_reconciler import sweep_expired_waves
from reflection.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("wave_expiration_sweep")
def wave_expiration_sweep(app) -> dict[str, Any]:
    """Deactivate expired waves and complete their sessions."""
    results = sweep_expired_waves()
    if results["expired_waves"] or results["deferred_sessions"]:
        logger.info("wave_expiration_sweep: %s", results,
                    extra={"job_name": "wave_expiration_sweep"})
    return results
