from .models import ActiveSubscriptions, Subscription
from .service import SubscriptionStore

__all__ = ["ActiveSubscriptions", "Subscription", "SubscriptionStore"]
