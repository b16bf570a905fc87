"""Command-line interface tests."""

import json

import pytest

from typeprof import __version__
from typeprof.cli import main


BROKEN = """
types:
  - {name: Point, fields: {name: String}}
methods:
  - name: greet
    params: ["p::Point"]
    line: 3
    body: {call: string, args: ["hello ", {getfield: {name: p}, field: nmae}], line: 4}
calls:
  - {call: greet, args: [{call: Point, args: ["ada"]}], line: 6}
"""

CLEAN = BROKEN.replace("field: nmae", "field: name")


def write(tmp_path, content, name="app.yml"):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


def run(argv):
    with pytest.raises(SystemExit) as exc:
        main(argv)
    return exc.value.code


class TestProfileCommand:

    def test_findings_exit_one(self, tmp_path, capsys):
        path = write(tmp_path, BROKEN)
        assert run(["profile", path, "--format", "text"]) == 1
        out = capsys.readouterr().out
        assert f"1 toplevel errors found in {path}" in out
        assert "type Point has no field nmae" in out
        assert "┌ @ " in out

    def test_clean_exit_zero(self, tmp_path, capsys):
        path = write(tmp_path, CLEAN)
        assert run(["profile", path, "--no-color"]) == 0
        assert "No errors !" in capsys.readouterr().out

    def test_json_output(self, tmp_path, capsys):
        path = write(tmp_path, BROKEN)
        assert run(["profile", path, "--format", "json"]) == 1
        data = json.loads(capsys.readouterr().out)
        assert data["total_errors"] == 1
        assert data["errors"][0]["kind"] == "invalid_field_access"

    def test_missing_file(self, tmp_path, capsys):
        assert run(["profile", str(tmp_path / "missing.yml")]) == 2
        assert "File not found" in json.loads(capsys.readouterr().out)["error"]

    def test_malformed_document(self, tmp_path, capsys):
        path = write(tmp_path, "calls: [\n")
        assert run(["profile", path]) == 2
        assert json.loads(capsys.readouterr().out)["type"] == "FrontendError"

    def test_invalid_config(self, tmp_path, capsys):
        path = write(tmp_path, CLEAN)
        config = write(tmp_path, "max_union_splitting: 0\n", ".typeprofrc.yml")
        assert run(["profile", path, "--config", config]) == 2
        assert json.loads(capsys.readouterr().out)["type"] == "ConfigError"

    def test_no_strict_prunes_literal_branches(self, tmp_path):
        path = write(tmp_path, """
methods:
  - name: f
    body: {if: false, then: {call: nope}, else: 1}
calls:
  - {call: f, line: 5}
""")
        assert run(["profile", path, "--format", "text"]) == 1
        assert run(["profile", path, "--format", "text", "--no-strict"]) == 0


class TestMain:

    def test_no_command(self, capsys):
        assert run([]) == 2
        assert "usage" in capsys.readouterr().out

    def test_version(self, capsys):
        assert run(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_watch_single_run(self, tmp_path, capsys):
        path = write(tmp_path, BROKEN)
        assert run(["watch", path, "--format", "text", "--max-runs", "1", "--interval", "0.01"]) == 0
        out = capsys.readouterr().out
        assert f"Watching {path}" in out
        assert "type Point has no field nmae" in out
