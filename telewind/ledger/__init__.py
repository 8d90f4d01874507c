from .models import Claim, DeliveryAttempt, DeliveryTransition
from .service import DeliveryLedger

__all__ = ["Claim", "DeliveryAttempt", "DeliveryLedger", "DeliveryTransition"]
