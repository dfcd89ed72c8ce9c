# Overview: Locking and retry helpers shared by the allocation and driver-sale services.

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientIOError
from ..extensions import db


logger = logging.getLogger(__name__)

T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the conditional UPDATE
    on allocation items and the version_id check carry the guarantee.
    """
    return query.with_for_update()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on version_id). When attempts run out the
    failure surfaces as TransientIOError so routes can answer 503.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise TransientIOError(
                    "Store temporarily unavailable, please retry",
                    details={"cause": exc.__class__.__name__},
                ) from exc
            logger.info("Retrying after %s (attempt %d/%d)", exc.__class__.__name__, attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
    raise TransientIOError("Store temporarily unavailable, please retry")

