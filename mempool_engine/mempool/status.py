"""
Subscription status channel.

A single broadcast point per subscription. Listeners register and get back a
cancel function; the controller is the only caller of emit().

File: mempool_engine/mempool/status.py
"""

import logging
from typing import Callable, Dict, Optional

from .models import SubscriptionStatus

logger = logging.getLogger(__name__)

StatusListener = Callable[[SubscriptionStatus], None]

# Transitions only move to a higher rank; CLOSED is terminal
STATUS_RANK: Dict[SubscriptionStatus, int] = {
    SubscriptionStatus.CONNECTING: 0,
    SubscriptionStatus.ACTIVE: 1,
    SubscriptionStatus.FALLBACK: 1,
    SubscriptionStatus.CLOSED: 2,
}


class StatusBroadcaster:
    """Holds the current status and fans transitions out to listeners."""

    def __init__(
        self,
        initial: SubscriptionStatus = SubscriptionStatus.CONNECTING,
        name: Optional[str] = None,
    ):
        self._status = initial
        self._listeners: Dict[int, StatusListener] = {}
        self._next_token = 0
        self._closed = False
        self.logger = logging.getLogger(f"{__name__}.{name}") if name else logger

    @property
    def status(self) -> SubscriptionStatus:
        return self._status

    def can_transition(self, new_status: SubscriptionStatus) -> bool:
        return STATUS_RANK[new_status] > STATUS_RANK[self._status]

    def listen(self, listener: StatusListener, replay: bool = True) -> Callable[[], None]:
        """
        Register a listener.

        Args:
            listener: Called with every new status
            replay: Immediately call the listener with the current status

        Returns:
            Cancel function (safe to call more than once)
        """
        if replay:
            self._notify(listener, self._status)

        if self._closed:
            return lambda: None

        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def cancel() -> None:
            self._listeners.pop(token, None)

        return cancel

    def emit(self, new_status: SubscriptionStatus) -> bool:
        """
        Move to new_status and notify listeners.

        Returns:
            True if the status changed, False for repeated or backwards moves
        """
        if not self.can_transition(new_status):
            return False

        previous, self._status = self._status, new_status
        self.logger.info(f"Status {previous.value} -> {new_status.value}")

        for listener in list(self._listeners.values()):
            self._notify(listener, new_status)
        return True

    def _notify(self, listener: StatusListener, status: SubscriptionStatus) -> None:
        try:
            listener(status)
        except Exception as e:
            self.logger.error(f"❌ Status listener failed: {e}", exc_info=True)

    def close(self) -> None:
        """Drop every listener. Later listen() calls only get the replay."""
        self._closed = True
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
