"""Delivery status transitions and retry scheduling."""
from __future__ import annotations

from datetime import datetime, timedelta

from webhook_engine.core.exceptions import InvalidStatusTransitionError
from webhook_engine.domain.enums import DeliveryStatus

DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.PROCESSING},
    DeliveryStatus.PROCESSING: {
        DeliveryStatus.SUCCESS,
        DeliveryStatus.FAILED,
        DeliveryStatus.DEAD,
        # liveness sweep after a crashed worker
        DeliveryStatus.PENDING,
    },
    DeliveryStatus.FAILED: {DeliveryStatus.PROCESSING},
    DeliveryStatus.SUCCESS: set(),
    DeliveryStatus.DEAD: set(),
}


def validate_delivery_transition(current: DeliveryStatus, new: DeliveryStatus) -> None:
    allowed = DELIVERY_TRANSITIONS.get(current, set())
    if new not in allowed:
        raise InvalidStatusTransitionError(
            f"Invalid delivery status transition: {current.value} → {new.value}"
        )


def backoff_seconds(attempts: int, base_seconds: float = 30.0) -> float:
    """Delay before the next try after ``attempts`` failures: base, 2*base, 4*base, ..."""
    if attempts < 1:
        raise ValueError("attempts is 1-based")
    return base_seconds * 2 ** (attempts - 1)


def status_after_failure(attempts: int, max_attempts: int) -> DeliveryStatus:
    return DeliveryStatus.DEAD if attempts >= max_attempts else DeliveryStatus.FAILED


def next_attempt_after_failure(
    now: datetime, attempts: int, max_attempts: int, base_seconds: float
) -> datetime | None:
    if attempts >= max_attempts:
        return None
    return now + timedelta(seconds=backoff_seconds(attempts, base_seconds))
