"""
Typed publish/subscribe channel for console components.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Type, Union

from shared.logging import get_logger


@dataclass(frozen=True)
class AvatarChanged:
    """A user's avatar was set or removed."""
    user_id: str
    avatar_url: str = ""


@dataclass(frozen=True)
class PinStateChanged:
    """A user's quick-PIN flags changed."""
    user_id: str
    has_quick_pin: Optional[bool] = None
    pin_enabled: Optional[bool] = None


ConsoleEvent = Union[AvatarChanged, PinStateChanged]
Handler = Callable[[ConsoleEvent], None]


class EventBus:
    """Delivers events to handlers registered for their type.

    Handlers run synchronously, in subscription order. A failing handler is
    logged and skipped; it never fails the mutation that published.
    """

    def __init__(self):
        self.logger = get_logger("users.events")
        self._handlers: Dict[Type, List[Handler]] = {}

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` for ``event_type``; returns an unsubscribe callable."""
        self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[event_type]

        return unsubscribe

    def publish(self, event: ConsoleEvent) -> int:
        """Deliver ``event``; returns how many handlers received it."""
        delivered = 0
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
                delivered += 1
            except Exception as e:
                self.logger.error(
                    "Event handler failed",
                    event_type=type(event).__name__,
                    error=str(e),
                )

        self.logger.debug("Event published", event_type=type(event).__name__, delivered=delivered)
        return delivered

    def subscriber_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, []))
