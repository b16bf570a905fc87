"""Profiling driver: one run over one program, and the watch loop.

Usage:
    from typeprof.session import profile
    report = profile("app.yml")
    print(report.total_errors)

Every run builds a fresh inference cache and dispatch memo; runs never
observe each other's state. Toplevel calls are the roots of a run and may
be inferred on a thread pool, each with its own interpreter, call stack
and detector. The report is reassembled in source order.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from typeprof.cache import InferenceCache
from typeprof.config import ProfilerConfig, load_config
from typeprof.detector import ErrorDetector
from typeprof.dispatch import DispatchResolver
from typeprof.engines.abstract_interp import AbstractInterpreter
from typeprof.errors import ErrorEvent, FrontendError
from typeprof.frames import CallFrame
from typeprof.frontend import build_environment, load_program
from typeprof.ir import Expr, Program
from typeprof.report import Report, build_report
from typeprof.types import AbstractType


logger = logging.getLogger(__name__)

# Root index of findings raised while evaluating global initialisers.
GLOBALS_ROOT = -1


@dataclass
class RootResult:
    index: int
    return_type: AbstractType
    events: list[ErrorEvent] = field(default_factory=list)
    frames: list[CallFrame] = field(default_factory=list)


class ProfileSession:
    """Runs profiles of programs under one configuration."""

    def __init__(self, config: Optional[ProfilerConfig] = None):
        self.config = config or ProfilerConfig()
        self.roots: list[RootResult] = []

    def profile(self, path: str) -> Report:
        return self.profile_program(load_program(path))

    def profile_program(self, program: Program) -> Report:
        started = time.perf_counter()
        registry, table = build_environment(program)
        cache = InferenceCache()
        resolver = DispatchResolver()

        def interpreter(detector: ErrorDetector, bound=None) -> AbstractInterpreter:
            return AbstractInterpreter(table, registry, self.config, cache=cache,
                                       resolver=resolver, detector=detector, globals=bound)

        global_detector = ErrorDetector(root=GLOBALS_ROOT)
        bound = interpreter(global_detector).bind_globals(program.globals)

        def run(index: int, call: Expr) -> RootResult:
            detector = ErrorDetector(root=index)
            interp = interpreter(detector, bound)
            result = interp.infer_toplevel(call)
            logger.debug("root %d (%s) -> %s, %d finding(s)",
                         index, call.source(), result, len(detector))
            return RootResult(index, result, detector.events, interp.frames)

        calls = list(enumerate(program.calls))
        if self.config.parallel and len(calls) > 1:
            workers = self.config.parallel_workers or min(len(calls), os.cpu_count() or 1)
            with ThreadPoolExecutor(max_workers=workers) as pool:
                roots = list(pool.map(lambda item: run(*item), calls))
        else:
            roots = [run(index, call) for index, call in calls]
        roots.sort(key=lambda r: r.index)
        self.roots = roots

        events = list(global_detector.events)
        for root in roots:
            events.extend(root.events)
        stats = cache.stats()
        stats["roots"] = len(roots)
        stats["seconds"] = round(time.perf_counter() - started, 4)
        logger.info("profiled %s: %d finding(s) in %d root(s)",
                    program.path, len(events), len(roots))
        return build_report(program.path, events, stats)


def profile(path: str, config: Optional[ProfilerConfig] = None) -> Report:
    """Profile the IR document at ``path``.

    Without an explicit config, the nearest .typeprofrc file above ``path``
    is used.
    """
    if config is None:
        config = load_config(start_dir=os.path.dirname(os.path.abspath(path)))
    return ProfileSession(config).profile(path)


def _mtime(path: str) -> Optional[float]:
    try:
        return os.path.getmtime(path)
    except OSError:
        return None


def profile_and_watch(
    path: str,
    on_report: Optional[Callable[[Report], None]] = None,
    config: Optional[ProfilerConfig] = None,
    poll_interval: Optional[float] = None,
    max_runs: Optional[int] = None,
    stop_event: Optional[threading.Event] = None,
) -> Optional[Report]:
    """Profile ``path``, then profile again whenever it is modified.

    Polls the modification time every ``poll_interval`` seconds. Stops when
    ``stop_event`` is set or after ``max_runs`` runs; returns the last
    report. A document that cannot be read mid-save is logged and retried
    on the next modification.
    """
    if config is None:
        config = load_config(start_dir=os.path.dirname(os.path.abspath(path)))
    interval = poll_interval if poll_interval is not None else config.poll_interval
    stop = stop_event or threading.Event()
    session = ProfileSession(config)
    last: Optional[Report] = None
    runs = 0

    def run_once() -> None:
        nonlocal last, runs
        runs += 1
        try:
            last = session.profile(path)
        except FrontendError as e:
            logger.warning("%s", e)
            return
        if on_report is not None:
            on_report(last)

    seen = _mtime(path)
    run_once()
    while not stop.is_set() and (max_runs is None or runs < max_runs):
        if stop.wait(interval):
            break
        current = _mtime(path)
        if current is not None and current != seen:
            seen = current
            logger.info("%s changed, re-profiling", path)
            run_once()
    return last
