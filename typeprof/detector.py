"""Error detector: the per-root sink every raise site reports into.

Findings never abort interpretation. Each one is stamped with the call
stack active at the raise site. Fixed-point loops take a ``checkpoint()``
before an iteration and ``rollback()`` the findings of iterations that a
later one supersedes.
"""

from __future__ import annotations

import logging
from typing import Iterable

from typeprof.cache import CallStack
from typeprof.errors import ErrorEvent, FrameInfo


logger = logging.getLogger(__name__)


class ErrorDetector:

    def __init__(self, root: int = 0):
        self.root = root
        self.events: list[ErrorEvent] = []

    def report(self, event: ErrorEvent, stack: CallStack) -> ErrorEvent:
        stamped = event.relocated(stack.snapshot(), self.root)
        self.events.append(stamped)
        logger.debug("root %d: %s", self.root, stamped)
        return stamped

    def restore(self, events: Iterable[ErrorEvent], prefix: tuple[FrameInfo, ...]) -> int:
        """Re-attach findings recorded relative to a cached callee."""
        n = 0
        for e in events:
            self.events.append(e.relocated(prefix, self.root))
            n += 1
        return n

    def checkpoint(self) -> int:
        return len(self.events)

    def rollback(self, checkpoint: int) -> None:
        del self.events[checkpoint:]

    def since(self, checkpoint: int) -> list[ErrorEvent]:
        return self.events[checkpoint:]

    def __len__(self) -> int:
        return len(self.events)
