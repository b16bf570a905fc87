"""Report tree: findings grouped by the call stacks that led to them.

Every ``ErrorEvent`` carries the frames active when it was detected,
outermost first. Events that share a frame prefix share the nodes of that
prefix, so sibling errors under one call appear under one node and frames
with no error below them never appear at all::

    @ fib.yml:12 fib(::String)          <- toplevel call
    └─ no matching method found `<=(::String, ::Int64)`
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from typeprof.errors import ErrorEvent, FrameInfo, SourceLocation


@dataclass
class ErrorNode:
    location: Optional[SourceLocation]
    callee_signature: str = ""
    children: list[ErrorNode] = field(default_factory=list)
    leaf_message: Optional[str] = None
    event: Optional[ErrorEvent] = field(default=None, repr=False, compare=False)

    @property
    def is_leaf(self) -> bool:
        return self.leaf_message is not None

    def leaves(self) -> Iterable[ErrorNode]:
        if self.is_leaf:
            yield self
        for child in self.children:
            yield from child.leaves()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "location": self.location.to_dict() if self.location else None,
        }
        if self.callee_signature:
            d["callee_signature"] = self.callee_signature
        if self.is_leaf:
            d["leaf_message"] = self.leaf_message
            if self.event is not None:
                d["kind"] = self.event.kind.value
        d["children"] = [c.to_dict() for c in self.children]
        return d


@dataclass
class Report:
    path: str
    total_errors: int = 0
    tree: list[ErrorNode] = field(default_factory=list)
    events: list[ErrorEvent] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.total_errors == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "total_errors": self.total_errors,
            "tree": [n.to_dict() for n in self.tree],
            "errors": [e.to_dict() for e in self.events],
            "stats": self.stats,
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class ReportTreeBuilder:
    """Assembles the events of one run into a ``Report``."""

    def __init__(self, path: str):
        self.path = path
        self._events: list[ErrorEvent] = []

    def add(self, events: Iterable[ErrorEvent]) -> ReportTreeBuilder:
        self._events.extend(events)
        return self

    def build(self, stats: Optional[dict[str, Any]] = None) -> Report:
        # Roots in source order; within a root, detection order.
        events = sorted(self._events, key=lambda e: e.root)
        tree: list[ErrorNode] = []
        roots: dict[tuple[int, FrameInfo], ErrorNode] = {}
        for event in events:
            siblings = tree
            for depth, frame in enumerate(event.frames):
                if depth == 0:
                    node = roots.get((event.root, frame))
                    if node is None:
                        node = roots[(event.root, frame)] = self._frame_node(frame)
                        siblings.append(node)
                else:
                    node = next((n for n in siblings if not n.is_leaf
                                 and n.location == frame.location
                                 and n.callee_signature == frame.signature), None)
                    if node is None:
                        node = self._frame_node(frame)
                        siblings.append(node)
                siblings = node.children
            siblings.append(ErrorNode(
                location=event.location,
                leaf_message=event.message,
                event=event,
            ))
        return Report(
            path=self.path,
            total_errors=len(events),
            tree=tree,
            events=events,
            stats=dict(stats or {}),
        )

    @staticmethod
    def _frame_node(frame: FrameInfo) -> ErrorNode:
        return ErrorNode(location=frame.location, callee_signature=frame.signature)


def build_report(path: str, events: Iterable[ErrorEvent],
                 stats: Optional[dict[str, Any]] = None) -> Report:
    return ReportTreeBuilder(path).add(events).build(stats)
