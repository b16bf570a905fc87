"""Structured findings and engine faults for typeprof.

Findings about the analysed program are data: every one is an ``ErrorEvent``
carrying the call stack that was active when it was detected. Faults of the
engine itself (a malformed method table, an unreadable IR document) are
exceptions rooted at ``EngineError`` and never mixed with findings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    NO_MATCHING_METHOD = "no_matching_method"
    AMBIGUOUS = "ambiguous"
    UNDEFINED_BINDING = "undefined_binding"
    INVALID_FIELD_ACCESS = "invalid_field_access"
    CONVERSION_FAILURE = "conversion_failure"
    UNSUPPORTED_CONSTRUCT = "unsupported_construct"
    ITERATION_LIMIT = "iteration_limit"


@dataclass(frozen=True)
class SourceLocation:
    line: int
    column: int = 0
    file: str = "<stdin>"

    def __str__(self) -> str:
        return f"{self.file}:{self.line}"

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "column": self.column}


@dataclass(frozen=True)
class FrameInfo:
    """Immutable record of one active call: where it was made and what was called."""
    location: Optional[SourceLocation]
    signature: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location.to_dict() if self.location else None,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class ErrorEvent:
    kind: ErrorKind
    message: str
    location: Optional[SourceLocation] = None
    expr_text: str = ""
    frames: tuple[FrameInfo, ...] = ()
    root: int = 0
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def relocated(self, prefix: tuple[FrameInfo, ...], root: int) -> ErrorEvent:
        """Copy of this event re-attached under a new call-stack prefix."""
        return ErrorEvent(
            kind=self.kind,
            message=self.message,
            location=self.location,
            expr_text=self.expr_text,
            frames=prefix + self.frames,
            root=root,
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.location:
            d["location"] = self.location.to_dict()
        if self.expr_text:
            d["expr"] = self.expr_text
        d["frames"] = [f.to_dict() for f in self.frames]
        if self.details:
            d["details"] = self.details
        return d

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def __str__(self) -> str:
        loc = f" at {self.location}" if self.location else ""
        return f"[{self.kind.value}]{loc}: {self.message}"


# ---------------------------------------------------------------------------
# Finding constructors
# ---------------------------------------------------------------------------

def no_matching_method(
    call_signature: str,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
    split: Optional[tuple[int, int]] = None,
) -> ErrorEvent:
    message = f"no matching method found `{call_signature}`"
    details: dict[str, Any] = {"signature": call_signature}
    if split is not None:
        message += f" ({split[0]}/{split[1]} union split)"
        details["union_split"] = list(split)
    return ErrorEvent(
        kind=ErrorKind.NO_MATCHING_METHOD,
        message=message,
        location=location,
        expr_text=expr_text,
        details=details,
    )


def ambiguous_call(
    call_signature: str,
    candidates: list[str],
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
) -> ErrorEvent:
    return ErrorEvent(
        kind=ErrorKind.AMBIGUOUS,
        message=(f"ambiguous method call `{call_signature}`, candidates: "
                 + ", ".join(candidates)),
        location=location,
        expr_text=expr_text,
        details={"signature": call_signature, "candidates": candidates},
    )


def undefined_binding(
    name: str,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
) -> ErrorEvent:
    return ErrorEvent(
        kind=ErrorKind.UNDEFINED_BINDING,
        message=f"`{name}` is not defined",
        location=location,
        expr_text=expr_text or name,
        details={"name": name},
    )


def invalid_field_access(
    type_name: str,
    field_name: str,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
) -> ErrorEvent:
    return ErrorEvent(
        kind=ErrorKind.INVALID_FIELD_ACCESS,
        message=f"type {type_name} has no field {field_name}",
        location=location,
        expr_text=expr_text,
        details={"type": type_name, "field": field_name},
    )


def conversion_failure(
    message: str,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
    source: str = "",
    target: str = "",
) -> ErrorEvent:
    details: dict[str, Any] = {}
    if source:
        details["source"] = source
    if target:
        details["target"] = target
    return ErrorEvent(
        kind=ErrorKind.CONVERSION_FAILURE,
        message=message,
        location=location,
        expr_text=expr_text,
        details=details,
    )


def unsupported_construct(
    construct: str,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
) -> ErrorEvent:
    return ErrorEvent(
        kind=ErrorKind.UNSUPPORTED_CONSTRUCT,
        message=f"unsupported construct `{construct}`",
        location=location,
        expr_text=expr_text,
        details={"construct": construct},
    )


def iteration_limit(
    what: str,
    limit: int,
    location: Optional[SourceLocation] = None,
    expr_text: str = "",
) -> ErrorEvent:
    return ErrorEvent(
        kind=ErrorKind.ITERATION_LIMIT,
        message=f"iteration limit ({limit}) exceeded while inferring {what}",
        location=location,
        expr_text=expr_text,
        details={"limit": limit},
    )


# ---------------------------------------------------------------------------
# Engine faults
# ---------------------------------------------------------------------------

class EngineError(Exception):
    """A fault of the engine or its inputs, never a finding about the program."""

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "type": type(self).__name__}

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class MethodTableError(EngineError):
    """The method table violates its invariants."""


class FrontendError(EngineError):
    """The IR document could not be read or is malformed."""

    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class ConfigError(EngineError):
    """A configuration file could not be read or holds invalid values."""
