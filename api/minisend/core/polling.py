"""Order status polling with a hard timeout."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from . import config
from .status import COMPLETED, PAYCREST, is_final, normalize_status

logger = logging.getLogger(__name__)

FetchStatus = Callable[[], Dict[str, Any]]
AttemptHook = Callable[[int, Optional[str], float, Optional[str]], None]


@dataclass
class PollingResult:
    success: bool
    completed: bool
    attempts: int
    elapsed: float
    status: Optional[str] = None
    order: Optional[Dict[str, Any]] = None
    timeout_reached: bool = False
    error: Optional[str] = None
    message: Optional[str] = None


def next_delay(attempt: int, interval: float, backoff_factor: float, max_interval: float) -> float:
    """Delay before poll ``attempt + 1``; constant when ``backoff_factor`` is 1."""

    delay = interval * (backoff_factor ** max(attempt - 1, 0))
    return min(delay, max_interval) if max_interval else delay


def poll_order_status(
    fetch_status: FetchStatus,
    *,
    provider: str = PAYCREST,
    interval: float = config.POLL_INTERVAL_SECONDS,
    max_duration: float = config.MAX_POLL_DURATION_SECONDS,
    backoff_factor: float = 1.0,
    max_interval: float = 0.0,
    max_attempts: Optional[int] = None,
    on_attempt: Optional[AttemptHook] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollingResult:
    """Call ``fetch_status`` until the order reaches a final status.

    Stops on the first settled or terminal status, after ``max_attempts``, or
    once ``max_duration`` seconds have elapsed. Sleeps never overrun the
    remaining time, so the loop always ends within ``max_duration`` plus the
    duration of one fetch.
    """

    started = clock()
    attempts = 0
    last_order: Optional[Dict[str, Any]] = None
    last_status: Optional[str] = None

    while True:
        elapsed = clock() - started
        if elapsed >= max_duration:
            logger.info("Polling timeout after %.1fs and %d attempts", elapsed, attempts)
            return PollingResult(
                success=False,
                completed=True,
                attempts=attempts,
                elapsed=elapsed,
                status=last_status,
                order=last_order,
                timeout_reached=True,
                error="Payment monitoring timeout - manual verification required",
                message="Check order status manually or contact support",
            )

        attempts += 1
        request_started = clock()
        error: Optional[str] = None
        try:
            last_order = fetch_status() or {}
            last_status = last_order.get("status")
        except Exception as exc:  # provider outages count as a spent attempt
            error = str(exc) or exc.__class__.__name__
            logger.warning("Polling attempt %d failed: %s", attempts, error)
        response_time = clock() - request_started

        if on_attempt is not None:
            try:
                on_attempt(attempts, "error" if error else last_status, response_time, error)
            except Exception as exc:  # pragma: no cover
                logger.debug("Polling attempt hook failed: %s", exc)

        if error is None and is_final(provider, last_status):
            normalized = normalize_status(provider, last_status)
            success = normalized == COMPLETED
            return PollingResult(
                success=success,
                completed=True,
                attempts=attempts,
                elapsed=clock() - started,
                status=last_status,
                order=last_order,
                error=None if success else f"Payment {last_status}",
                message="Payment successfully delivered to recipient" if success else f"Payment {last_status}",
            )

        if max_attempts is not None and attempts >= max_attempts:
            logger.info("Polling stopped after max attempts (%d)", attempts)
            return PollingResult(
                success=False,
                completed=True,
                attempts=attempts,
                elapsed=clock() - started,
                status=last_status,
                order=last_order,
                error=error or "Payment monitoring timeout - manual verification required",
                message="Maximum polling attempts reached",
            )

        remaining = max_duration - (clock() - started)
        delay = min(next_delay(attempts, interval, backoff_factor, max_interval), max(remaining, 0.0))
        if delay > 0:
            logger.debug("Next poll in %.1fs (attempt %d, status %s)", delay, attempts + 1, last_status)
            sleep(delay)
