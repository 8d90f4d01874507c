"""Error taxonomy shared by the store, ledger and delivery workers."""


class TelewindError(Exception):
    """Base class for all telewind errors."""


class DuplicateSubscription(TelewindError):
    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} is already subscribed")
        self.user_id = user_id


class NotFound(TelewindError):
    def __init__(self, user_id: int):
        super().__init__(f"user {user_id} has no active subscription")
        self.user_id = user_id


class StorageUnavailable(TelewindError):
    """Durable storage could not complete the operation. Retry from the outer loop."""


class LeaseExpired(TelewindError):
    """A worker tried to record an outcome for a claim it no longer holds."""

    def __init__(self, event_key: str, subscription_id: int, worker_id: str):
        super().__init__(
            f"lease on ({event_key}, {subscription_id}) is no longer held by {worker_id}"
        )
        self.event_key = event_key
        self.subscription_id = subscription_id
        self.worker_id = worker_id


class DeliveryError(TelewindError):
    """Base class for delivery channel failures."""


class TransientDeliveryError(DeliveryError):
    """Channel unavailable or timed out. Safe to retry."""


class PermanentDeliveryError(DeliveryError):
    """Recipient is invalid or has blocked the bot. Never retried."""


class ObservationParseError(TelewindError):
    """The anemometer page could not be parsed."""
