"""Call frames: one inference of one (function, argument types) pair.

Lifecycle::

    PENDING --start()--> IN_PROGRESS --finish()--> RESOLVED | ERRORED
                              |   ^
               recursion hit  v   |  fixed point reached
                            WIDENING
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from typeprof.errors import EngineError, FrameInfo, SourceLocation
from typeprof.method_table import MethodSignature, signature_text
from typeprof.types import AbstractType, BOTTOM


class FrameStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WIDENING = "widening"
    RESOLVED = "resolved"
    ERRORED = "errored"


_TRANSITIONS = {
    FrameStatus.PENDING: {FrameStatus.IN_PROGRESS},
    FrameStatus.IN_PROGRESS: {FrameStatus.WIDENING, FrameStatus.RESOLVED, FrameStatus.ERRORED},
    FrameStatus.WIDENING: {FrameStatus.IN_PROGRESS},
    FrameStatus.RESOLVED: set(),
    FrameStatus.ERRORED: set(),
}


class CallFrame:
    """A call being (or having been) inferred.

    ``parent`` is a back-reference; children are owned. ``estimate`` is the
    running return-type estimate used while the frame is its own recursive
    callee; ``provisional`` marks frames whose result depended on such an
    estimate of an ancestor and therefore must not be cached.
    """

    def __init__(self, function: str, argtypes: tuple[AbstractType, ...],
                 location: Optional[SourceLocation] = None,
                 parent: Optional[CallFrame] = None,
                 method: Optional[MethodSignature] = None):
        self.function = function
        self.argtypes = argtypes
        self.location = location
        self.parent = parent
        self.method = method
        self.status = FrameStatus.PENDING
        self.return_type: AbstractType = BOTTOM
        self.children: list[CallFrame] = []
        self.estimate: AbstractType = BOTTOM
        self.recursive = False
        self.provisional = False
        self.iterations = 0

    @property
    def signature(self) -> str:
        return signature_text(self.function, self.argtypes)

    def info(self) -> FrameInfo:
        return FrameInfo(self.location, self.signature)

    def _move(self, status: FrameStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise EngineError(f"invalid frame transition {self.status.value} -> "
                              f"{status.value} for {self.signature}")
        self.status = status

    def start(self) -> None:
        self._move(FrameStatus.IN_PROGRESS)

    def enter_widening(self) -> None:
        self.recursive = True
        if self.status is FrameStatus.IN_PROGRESS:
            self._move(FrameStatus.WIDENING)

    def leave_widening(self) -> None:
        if self.status is FrameStatus.WIDENING:
            self._move(FrameStatus.IN_PROGRESS)

    def finish(self, return_type: AbstractType, errored: bool) -> None:
        self.leave_widening()
        self.return_type = return_type
        self._move(FrameStatus.ERRORED if errored else FrameStatus.RESOLVED)

    def add_child(self, frame: CallFrame) -> CallFrame:
        frame.parent = self
        self.children.append(frame)
        return frame

    def __repr__(self) -> str:
        return f"CallFrame({self.signature}, {self.status.value})"
