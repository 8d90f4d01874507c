"""telewind - wind alert subscriptions and notification delivery."""

__version__ = "0.2.0"
