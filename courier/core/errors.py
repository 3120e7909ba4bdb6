"""Error taxonomy for the delivery core.

Transient      : provider/network errors and timeouts; retried with backoff
Permanent      : rejected recipient or content; dead-lettered immediately
Configuration  : missing transport credentials; the subsystem refuses to start
Validation     : malformed enqueue input; rejected before it reaches the queue
"""
from __future__ import annotations


class NotificationValidationError(ValueError):
    """Raised when an enqueued notification is malformed."""


class DeliveryError(Exception):
    """Base class for errors raised by a delivery adapter."""

    permanent = False


class TransientDeliveryError(DeliveryError):
    """Retryable delivery failure (network, provider outage, rate limit)."""


class PermanentDeliveryError(DeliveryError):
    """Non-retryable delivery failure (bad recipient, rejected content)."""

    permanent = True


class ConfigurationError(RuntimeError):
    """Raised when the delivery transport is not configured."""


class UnknownJobError(KeyError):
    """Raised when a scheduler operation names an unregistered job."""
