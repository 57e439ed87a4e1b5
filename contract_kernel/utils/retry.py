"""
Bounded retry for optimistic-concurrency conflicts.

Only sweep jobs use this.  Sweeps are idempotent (every item re-reads its
current status before transitioning), so re-running an item after a
ConcurrentModificationError is safe.  Every other error propagates on the
first attempt.
"""

import time
from typing import Callable, TypeVar

from contract_kernel.exceptions import ConcurrentModificationError, ContractKernelError
from contract_kernel.logging_config import get_logger

logger = get_logger("utils.retry")

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``operation``, retrying on ConcurrentModificationError.

    Waits ``backoff_seconds * attempt`` between tries (linear backoff).
    The last conflict is re-raised once ``attempts`` are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrentModificationError as exc:
            if attempt == attempts:
                logger.warning(
                    "conflict_retries_exhausted",
                    extra={
                        "label": label,
                        "attempts": attempts,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                    },
                )
                raise
            logger.info(
                "conflict_retry",
                extra={
                    "label": label,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "entity_type": exc.entity_type,
                    "entity_id": exc.entity_id,
                },
            )
            sleep(backoff_seconds * attempt)

    raise AssertionError("unreachable")


def run_sweep_item(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    backoff_seconds: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "sweep_item",
) -> T | None:
    """
    Run one sweep item; a failure is logged and reported as None.

    One item failing (conflict retries exhausted or any other kernel error)
    never stops the rest of the sweep.
    """
    try:
        return retry_on_conflict(
            operation,
            attempts=attempts,
            backoff_seconds=backoff_seconds,
            sleep=sleep,
            label=label,
        )
    except ConcurrentModificationError:
        return None
    except ContractKernelError as exc:
        logger.warning("sweep_item_failed", extra={"label": label, "error_code": exc.code})
        return None
