from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.orm import Session

from app.core.celery_app import celery_app
from app.core.config import get_settings
from app.core.database import SessionLocal
from app.pipeline.clock import Clock, SystemClock
from app.pipeline.month_close import month_close_service


logger = logging.getLogger("app.pipeline.tasks")


def run_auto_close(session_factory: Callable[[], Session], clock: Clock) -> dict[str, Any] | None:
    if not get_settings().auto_close_enabled:
        logger.info("month_close.auto_disabled", extra={"closed_by": "auto"})
        return None

    session = session_factory()
    try:
        result = month_close_service.run_scheduled_close(session, clock)
    except Exception as exc:
        logger.exception("month_close.auto_failed", extra={"closed_by": "auto", "error": str(exc)})
        raise
    finally:
        session.close()

    if result is None:
        return None
    return result.model_dump(mode="json", by_alias=True)


@celery_app.task(name="app.pipeline.tasks.auto_close_month")
def auto_close_month() -> dict[str, Any] | None:
    return run_auto_close(SessionLocal, SystemClock(get_settings().scheduler_timezone))
