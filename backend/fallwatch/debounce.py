from __future__ import annotations

import logging
import time
from enum import Enum
from threading import Lock
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_MS = 60_000


def epoch_ms() -> int:
    return int(time.time() * 1000)


class DebounceState(str, Enum):
    IDLE = "idle"
    COOLING = "cooling"


class NotificationState:
    """Last notification time per recipient. Lives for the process only."""

    def __init__(self) -> None:
        self._last_notified_at: Dict[str, int] = {}

    def last_notified_at(self, recipient: str) -> Optional[int]:
        return self._last_notified_at.get(recipient)

    def record(self, recipient: str, now_ms: int) -> None:
        self._last_notified_at[recipient] = now_ms

    def prune(self, cutoff_ms: int) -> int:
        """Drop recipients last notified at or before `cutoff_ms`; return how many."""
        expired = [r for r, t in self._last_notified_at.items() if t <= cutoff_ms]
        for recipient in expired:
            del self._last_notified_at[recipient]
        return len(expired)

    def clear(self, recipient: Optional[str] = None) -> None:
        if recipient is None:
            self._last_notified_at.clear()
        else:
            self._last_notified_at.pop(recipient, None)

    def __len__(self) -> int:
        return len(self._last_notified_at)


class AlertDebouncer:
    """
    Per-recipient cooldown.

    A recipient is Idle until a dispatch is allowed, then Cooling until
    `cooldown_ms` has elapsed since that attempt. The attempt time is recorded
    whether or not the call later succeeds.
    """

    def __init__(self, cooldown_ms: int = DEFAULT_COOLDOWN_MS, state: Optional[NotificationState] = None) -> None:
        if cooldown_ms < 0:
            raise ValueError(f"cooldown_ms must be >= 0, got {cooldown_ms}")
        self.cooldown_ms = int(cooldown_ms)
        self.state = state if state is not None else NotificationState()
        # The endpoint can be hit from several request threads
        self._lock = Lock()

    def state_of(self, recipient: str, now_ms: int) -> DebounceState:
        last = self.state.last_notified_at(recipient)
        if last is None or now_ms - last >= self.cooldown_ms:
            return DebounceState.IDLE
        return DebounceState.COOLING

    def remaining_ms(self, recipient: str, now_ms: int) -> int:
        last = self.state.last_notified_at(recipient)
        if last is None:
            return 0
        return max(0, self.cooldown_ms - (now_ms - last))

    def should_dispatch(self, recipient: str, now_ms: int) -> bool:
        with self._lock:
            # Expired entries read the same as absent ones
            self.state.prune(now_ms - self.cooldown_ms)
            if self.state_of(recipient, now_ms) is DebounceState.COOLING:
                logger.debug(
                    "Suppressing dispatch to %s; %d ms of cooldown left",
                    recipient,
                    self.remaining_ms(recipient, now_ms),
                )
                return False
            self.state.record(recipient, now_ms)
        logger.info("Dispatch allowed for %s at %d", recipient, now_ms)
        return True
