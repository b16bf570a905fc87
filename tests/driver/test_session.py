"""Profiling driver tests: profile(), profile_and_watch()."""

import os
import threading

import pytest

from typeprof.config import ProfilerConfig
from typeprof.errors import FrontendError
from typeprof.session import profile, profile_and_watch


BROKEN = """
methods:
  - name: f
    params: [x]
    body: {call: "+", args: [{name: x}, 1], line: 4}
calls:
  - {call: f, args: ["a"], line: 6}
"""

FIXED = BROKEN.replace('args: ["a"]', "args: [2]")


@pytest.fixture
def program(tmp_path):
    path = tmp_path / "app.yml"
    path.write_text(BROKEN)
    return str(path)


def bump_mtime(path):
    st = os.stat(path)
    os.utime(path, (st.st_atime + 10, st.st_mtime + 10))


class TestProfile:

    def test_profile_file(self, program):
        report = profile(program)
        assert report.total_errors == 1
        assert report.path == program
        assert report.events[0].message == "no matching method found `+(::String, ::Int64)`"

    def test_profile_reads_project_config(self, tmp_path):
        (tmp_path / ".typeprofrc.yml").write_text("explore_both_branches: false\n")
        path = tmp_path / "app.yml"
        path.write_text("""
methods:
  - name: f
    body: {if: {lit: true}, then: 1, else: "s"}
calls:
  - {call: "-", args: [{call: f}], line: 5}
""")
        assert profile(str(path)).total_errors == 0
        assert profile(str(path), ProfilerConfig()).total_errors == 1

    def test_parallel_matches_sequential(self, tmp_path):
        path = tmp_path / "app.yml"
        calls = "\n".join(
            f'  - {{call: f, args: [{arg}], line: {10 + i}}}'
            for i, arg in enumerate(['"a"', "1", "2.5", '"b"', "true", "3"])
        )
        path.write_text(BROKEN.split("calls:")[0] + "calls:\n" + calls + "\n")
        sequential = profile(str(path), ProfilerConfig())
        parallel = profile(str(path), ProfilerConfig(parallel=True, parallel_workers=3))
        assert sequential.to_dict()["tree"] == parallel.to_dict()["tree"]
        assert sequential.total_errors == parallel.total_errors == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(FrontendError):
            profile(str(tmp_path / "missing.yml"))

    def test_json_document(self, tmp_path):
        path = tmp_path / "app.json"
        path.write_text('{"calls": [{"call": "nope", "line": 1}]}')
        report = profile(str(path))
        assert report.events[0].message == "`nope` is not defined"


class TestWatch:

    def test_reprofiles_on_modification(self, program):
        reports = []

        def on_report(report):
            reports.append(report)
            if len(reports) == 1:
                with open(program, "w") as f:
                    f.write(FIXED)
                bump_mtime(program)

        last = profile_and_watch(program, on_report=on_report, config=ProfilerConfig(),
                                 poll_interval=0.01, max_runs=2)
        assert [r.total_errors for r in reports] == [1, 0]
        assert last is reports[-1]

    def test_stop_event(self, program):
        stop = threading.Event()
        stop.set()
        reports = []
        profile_and_watch(program, on_report=reports.append, config=ProfilerConfig(),
                          poll_interval=0.01, stop_event=stop)
        assert len(reports) == 1

    def test_unreadable_document_is_retried(self, program):
        reports = []

        def on_report(report):
            reports.append(report)
            with open(program, "w") as f:
                f.write("methods: [")
            bump_mtime(program)

        stop = threading.Event()
        timer = threading.Timer(0.3, stop.set)
        timer.start()
        try:
            profile_and_watch(program, on_report=on_report, config=ProfilerConfig(),
                              poll_interval=0.01, stop_event=stop)
        finally:
            timer.cancel()
        assert len(reports) == 1
