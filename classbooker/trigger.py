"""Entry point invoked by the external scheduler."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from classbooker.config import BookingConstants, Settings, get_settings
from classbooker.exceptions import ForbiddenError
from classbooker.models import RunResults
from classbooker.orchestrator import BookingOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


def verify_scheduler_request(headers: Mapping[str, str], settings: Settings) -> None:
    """
    Only the scheduler may trigger a run in production.

    Raises:
        ForbiddenError: If the scheduler header is missing in production
    """
    if not settings.is_production:
        return

    wanted = BookingConstants.SCHEDULER_HEADER.lower()
    if not any(key.lower() == wanted and value for key, value in headers.items()):
        raise ForbiddenError(
            f"Forbidden - {BookingConstants.SCHEDULER_HEADER} header required"
        )


async def check_bookings(
    headers: Mapping[str, str],
    settings: Settings | None = None,
    orchestrator: BookingOrchestrator | None = None,
) -> dict[str, Any]:
    """
    Run the scheduled booking check.

    Per-user failures are reported inside ``results``; only a failure of the
    run itself yields ``success: False``.

    Raises:
        ForbiddenError: If the caller is not the scheduler
    """
    settings = settings or get_settings()
    verify_scheduler_request(headers, settings)

    logger.info("Starting booking check...")
    orchestrator = orchestrator or build_orchestrator(settings)
    results = RunResults()
    try:
        results = await orchestrator.run()
    except Exception as e:
        logger.exception(f"Booking run failed: {e}")
        return {"success": False, "error": str(e), "results": results.to_dict()}

    return {
        "success": True,
        "message": "Booking check completed",
        "results": results.to_dict(),
    }
