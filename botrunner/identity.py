"""
Bot identity allocation.

Names are ``<prefix><n>`` with ``n`` taken from a single counter shared by all
deploy requests. The counter only moves forward, so a name is never handed out
twice, even after the bot it belonged to has been stopped.
"""

import logging
import re
import threading

logger = logging.getLogger(__name__)


class IdentityAllocator:
    """Thread-safe monotonic bot name allocator."""

    def __init__(self, prefix: str = "bot", start: int = 1):
        self.prefix = prefix
        self._next = start
        self._lock = threading.Lock()
        self._pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")

    def allocate(self) -> str:
        """Return a name no other caller has received."""
        with self._lock:
            value = self._next
            self._next += 1
        return f"{self.prefix}{value}"

    def seed(self, next_value: int):
        """Advance the counter so the next allocation is at least next_value."""
        with self._lock:
            if next_value > self._next:
                logger.info(f"Identity counter advanced to {next_value}")
                self._next = next_value

    def matches(self, name: str) -> bool:
        """Check if a name follows the bot naming convention."""
        return bool(name) and self._pattern.match(name) is not None

    def sequence_of(self, name: str) -> int | None:
        """Get the counter value encoded in a bot name."""
        match = self._pattern.match(name or "")
        return int(match.group(1)) if match else None
