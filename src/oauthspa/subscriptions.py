"""Per-resource observers of access-token changes.

Subscribers never receive a value handed over by the code that mutated the
store: :meth:`SubscriptionBus.notify` re-reads the persisted token through
the reader it was built with, so what observers see and what storage holds
cannot disagree.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

Subscriber = Callable[[Optional[str]], None]
Unsubscribe = Callable[[], None]


class _Subscription:
    __slots__ = ("resource", "callback")

    def __init__(self, resource: str, callback: Subscriber) -> None:
        self.resource = resource
        self.callback = callback


class SubscriptionBus:
    """Insertion-ordered registry of ``(resource, callback)`` subscriptions.

    Args:
        reader: Returns the currently stored access token for a resource.
    """

    def __init__(self, reader: Callable[[str], Optional[str]]) -> None:
        self._reader = reader
        # dict keys keep insertion order; values unused
        self._subscriptions: dict[_Subscription, None] = {}

    def subscribe(self, resource: str, callback: Subscriber) -> Unsubscribe:
        """Register *callback* for *resource* and replay the current value.

        The callback is invoked synchronously once before this method
        returns, then once per subsequent :meth:`notify` for *resource*.

        Returns:
            An idempotent function removing this subscription.
        """
        subscription = _Subscription(resource, callback)
        self._subscriptions[subscription] = None
        callback(self._reader(resource))

        def unsubscribe() -> None:
            self._subscriptions.pop(subscription, None)

        return unsubscribe

    def notify(self, resource: str) -> None:
        """Invoke every subscriber of *resource* with the stored token."""
        access_token = self._reader(resource)
        for subscription in list(self._subscriptions):
            if subscription.resource != resource:
                continue
            try:
                subscription.callback(access_token)
            except Exception:
                logger.exception("Subscriber for resource '%s' raised", resource)

    def count(self, resource: Optional[str] = None) -> int:
        if resource is None:
            return len(self._subscriptions)
        return sum(1 for s in self._subscriptions if s.resource == resource)
