"""Domain enums."""
from __future__ import annotations

from enum import Enum


class DeliveryStatus(str, Enum):
    """Lifecycle of a single webhook delivery."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DEAD = "DEAD"

    @property
    def is_terminal(self) -> bool:
        return self in (DeliveryStatus.SUCCESS, DeliveryStatus.DEAD)

    @property
    def is_claimable(self) -> bool:
        return self in (DeliveryStatus.PENDING, DeliveryStatus.FAILED)
