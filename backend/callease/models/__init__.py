"""ORM models."""

from callease.models.call_log import CallLog
from callease.models.processed_stripe_event import ProcessedStripeEvent
from callease.models.subscription import Subscription
from callease.models.user import User

__all__ = ["CallLog", "ProcessedStripeEvent", "Subscription", "User"]
