"""Collaborator interfaces: events in, deliveries out."""
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Protocol, runtime_checkable


@dataclass(frozen=True)
class Event:
    """A unit of notifiable content. ``key`` is unique per dispatch cycle."""

    key: str
    payload: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class DeliveryChannel(Protocol):
    """
    The only side-effecting boundary to the outside world.

    ``send`` returning normally means the message was delivered. Failures
    raise TransientDeliveryError (retryable) or PermanentDeliveryError.
    """

    async def send(self, user_id: int, payload: Dict[str, Any]) -> None:
        ...


@runtime_checkable
class EventSource(Protocol):
    """Produces events for ``DispatchScheduler.dispatch``."""

    def events(self) -> AsyncIterator[Event]:
        ...
