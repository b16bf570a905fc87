"""typeprof Output Formatters: report trees for the terminal.

Provides output modes:
    pretty  colored tree with connectors (default)
    text    the same tree without colors
    json    machine-readable ``Report.to_json``
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from typeprof.report import ErrorNode, Report


# ── ANSI color helpers ───────────────────────────────────────────────────

_NO_COLOR = os.environ.get("NO_COLOR") is not None or not sys.stdout.isatty()


def _c(code: str, text: str, color: Optional[bool] = None) -> str:
    enabled = not _NO_COLOR if color is None else color
    if not enabled:
        return text
    return f"\033[{code}m{text}\033[0m"


def red(t: str, color: Optional[bool] = None) -> str:
    return _c("31", t, color)


def green(t: str, color: Optional[bool] = None) -> str:
    return _c("32", t, color)


def cyan(t: str, color: Optional[bool] = None) -> str:
    return _c("36", t, color)


def bold(t: str, color: Optional[bool] = None) -> str:
    return _c("1", t, color)


def dim(t: str, color: Optional[bool] = None) -> str:
    return _c("2", t, color)


# ── Tree formatter ───────────────────────────────────────────────────────

def header(report: Report, color: Optional[bool] = None) -> str:
    if report.total_errors == 0:
        return green("No errors !", color)
    return bold(f"{report.total_errors} toplevel errors found in {report.path}", color)


def format_tree(report: Report, color: Optional[bool] = None) -> str:
    """Render the report tree::

        2 toplevel errors found in app.yml
        ┌ @ app.yml:20 outer(::Point)
        │┌ @ app.yml:8 middle(::Point)
        ││ type Point has no field nmae
        │└
        └
    """
    lines = [header(report, color)]
    for root in report.tree:
        _format_node(root, 0, lines, color)
    return "\n".join(lines)


def _format_node(node: ErrorNode, depth: int, lines: list[str], color: Optional[bool]) -> None:
    bars = "│" * depth
    if node.is_leaf:
        where = f"{dim(str(node.location), color)} " if node.location and depth == 0 else ""
        lines.append(f"{bars}{where}{red(node.leaf_message, color)}")
        return
    location = str(node.location) if node.location else "<toplevel>"
    lines.append(f"{bars}┌ @ {cyan(location, color)} {node.callee_signature}")
    for child in node.children:
        _format_node(child, depth + 1, lines, color)
    lines.append(f"{bars}└")


def format_report(report: Report, fmt: str = "pretty", color: Optional[bool] = None) -> str:
    """Dispatch to the appropriate formatter.

    Args:
        report: The report of one profiling run.
        fmt: One of "pretty", "text", "json".
        color: Force colors on or off; None auto-detects.
    """
    if fmt == "json":
        return report.to_json()
    elif fmt == "text":
        return format_tree(report, color=False)
    else:
        return format_tree(report, color)
