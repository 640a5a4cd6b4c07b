"""Route modules."""

from . import deliveries, endpoints, inbound

__all__ = ["deliveries", "endpoints", "inbound"]
