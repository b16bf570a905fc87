"""Inference cache and call-stack tracker.

The cache maps a call key (generic function, selected method, narrowed
argument types) to the completed result of inferring it: its return type
and the findings raised inside it, recorded relative to the callee so they
can be re-attached under whichever caller hits the cache. It lives for one
profiling run and may be shared by the roots of that run.

The call stack holds the frames currently being inferred and answers the
two questions recursion handling needs: is this exact key already in
progress, and is this method already on the stack with other arguments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Iterator, Optional

from typeprof.errors import ErrorEvent, FrameInfo
from typeprof.frames import CallFrame
from typeprof.method_table import MethodSignature
from typeprof.types import AbstractType


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallKey:
    function: str
    method: str
    argtypes: tuple[AbstractType, ...]

    @classmethod
    def of(cls, frame: CallFrame) -> CallKey:
        return cls(frame.function, str(frame.method), frame.argtypes)


@dataclass(frozen=True)
class CachedResult:
    return_type: AbstractType
    events: tuple[ErrorEvent, ...] = ()
    iterations: int = 0


class InferenceCache:
    """Per-run memo of completed call inferences."""

    def __init__(self) -> None:
        self._entries: dict[CallKey, CachedResult] = {}
        self._lock = Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CallKey) -> Optional[CachedResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
            else:
                self.hits += 1
        if entry is not None:
            logger.debug("cache hit %s%s", key.function, key.argtypes)
        return entry

    def put(self, key: CallKey, result: CachedResult) -> CachedResult:
        with self._lock:
            # The first completed inference of a key wins; later ones are equal.
            return self._entries.setdefault(key, result)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}


class CallStack:
    """Frames currently being inferred, outermost first."""

    def __init__(self) -> None:
        self._frames: list[CallFrame] = []

    def push(self, frame: CallFrame) -> None:
        self._frames.append(frame)

    def pop(self) -> CallFrame:
        return self._frames.pop()

    @property
    def top(self) -> Optional[CallFrame]:
        return self._frames[-1] if self._frames else None

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[CallFrame]:
        return iter(self._frames)

    def find(self, key: CallKey) -> Optional[CallFrame]:
        """The in-progress frame inferring exactly ``key``, if any."""
        for frame in reversed(self._frames):
            if frame.method is not None and CallKey.of(frame) == key:
                return frame
        return None

    def find_method(self, method: MethodSignature) -> Optional[CallFrame]:
        """The innermost in-progress frame inferring ``method`` with any arguments."""
        for frame in reversed(self._frames):
            if frame.method is method:
                return frame
        return None

    def mark_provisional_above(self, frame: CallFrame) -> None:
        """Every frame above ``frame`` now depends on its running estimate."""
        seen = False
        for f in self._frames:
            if seen:
                f.provisional = True
            elif f is frame:
                seen = True

    def snapshot(self) -> tuple[FrameInfo, ...]:
        return tuple(f.info() for f in self._frames)
