"""
Cross-component notifications emitted after successful mutations.
"""

from .bus import AvatarChanged, ConsoleEvent, EventBus, PinStateChanged

__all__ = ["AvatarChanged", "ConsoleEvent", "EventBus", "PinStateChanged"]
