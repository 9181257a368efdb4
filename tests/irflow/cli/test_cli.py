"""Tests for the irflow command line interface."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import pytest
import yaml
from typer.testing import CliRunner

from irflow import __version__
from irflow.cli.main import app

if TYPE_CHECKING:
    from pathlib import Path

    from click.testing import Result

SCHEMA = {"type": "object", "required": ["pages"], "properties": {"pages": {"type": "integer"}}}


@pytest.fixture
def runner() -> CliRunner:
    """Fixture providing a Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def db(tmp_path: Path) -> Path:
    return tmp_path / "cli.db"


def invoke(runner: CliRunner, db: Path, *args: str) -> Result:
    return runner.invoke(app, ["--db", str(db), "--log-level", "error", *args])


def invoke_json(runner: CliRunner, db: Path, *args: str) -> Any:
    result = invoke(runner, db, "--json", *args)
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def write(path: Path, data: Any) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def intake(runner: CliRunner, db: Path, tmp_path: Path) -> dict[str, str]:
    """Register two active steps and a two-node pipeline ``intake`` v1."""
    ocr = invoke_json(runner, db, "steps", "add", "ocr", "v1", "--activate")
    classify = invoke_json(runner, db, "steps", "add", "classify", "v1", "--activate")
    dag = write(
        tmp_path / "dag.yaml",
        {
            "nodes": [
                {"key": "classify", "stepVersionId": classify["id"], "order": 1},
                {"key": "ocr", "stepVersionId": ocr["id"], "order": 0, "params": {"dpi": 300}},
            ]
        },
    )
    pipeline = invoke_json(runner, db, "pipelines", "add", "intake", "v1", str(dag), "--activate")
    return {"ocr": ocr["id"], "classify": classify["id"], "pipeline": pipeline["id"]}


class TestGlobalOptions:
    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_unknown_log_level(self, runner: CliRunner, db: Path) -> None:
        result = runner.invoke(app, ["--db", str(db), "--log-level", "loud", "steps", "list"])

        assert result.exit_code != 0


class TestSteps:
    def test_add_and_list(self, runner: CliRunner, db: Path) -> None:
        added = invoke_json(runner, db, "steps", "add", "ocr", "v1", "--activate")
        invoke_json(runner, db, "steps", "add", "ocr", "v2")

        rows = invoke_json(runner, db, "steps", "list")

        assert [r["name"] for r in rows] == ["ocr"]
        assert [(v["label"], v["active"]) for v in rows[0]["versions"]] == [
            ("v1", True),
            ("v2", False),
        ]
        assert rows[0]["versions"][0]["id"] == added["id"]

    def test_activate(self, runner: CliRunner, db: Path) -> None:
        invoke_json(runner, db, "steps", "add", "ocr", "v1", "--activate")
        invoke_json(runner, db, "steps", "add", "ocr", "v2")

        result = invoke(runner, db, "steps", "activate", "ocr", "v2")

        assert result.exit_code == 0
        versions = invoke_json(runner, db, "steps", "versions", "ocr")
        assert [v["label"] for v in versions if v["active"]] == ["v2"]

    def test_default_config_file(self, runner: CliRunner, db: Path, tmp_path: Path) -> None:
        config = write(tmp_path / "ocr.yaml", {"dpi": 300})
        invoke_json(runner, db, "steps", "add", "ocr", "v1", "--default-config", str(config))
        dag = write(
            tmp_path / "dag.yaml",
            {"nodes": [{"key": "ocr", "stepVersionId": _step_id(runner, db, "ocr")}]},
        )
        invoke_json(runner, db, "pipelines", "add", "single", "v1", str(dag), "--activate")

        result = invoke_json(runner, db, "plan", "single")

        assert result["resolvedConfigs"] == {"ocr": {"dpi": 300}}

    def test_duplicate_label_is_an_error(self, runner: CliRunner, db: Path) -> None:
        invoke_json(runner, db, "steps", "add", "ocr", "v1")

        result = invoke(runner, db, "steps", "add", "ocr", "v1")

        assert result.exit_code == 1
        assert "conflict" in result.output

    def test_empty_registry(self, runner: CliRunner, db: Path) -> None:
        assert invoke_json(runner, db, "steps", "list") == []


class TestPipelines:
    def test_versions(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        versions = invoke_json(runner, db, "pipelines", "versions", "intake")

        assert [(v["id"], v["label"], v["active"]) for v in versions] == [
            (intake["pipeline"], "v1", True)
        ]

    def test_activate_swaps(
        self, runner: CliRunner, db: Path, intake: dict[str, str], tmp_path: Path
    ) -> None:
        nodes = [{"key": "ocr", "stepVersionId": intake["ocr"]}]
        dag = write(tmp_path / "dag2.yaml", {"nodes": nodes})
        invoke_json(runner, db, "pipelines", "add", "intake", "v2", str(dag))

        result = invoke(runner, db, "pipelines", "activate", "intake", "v2")

        assert result.exit_code == 0
        rows = invoke_json(runner, db, "pipelines", "list")
        assert [(v["label"], v["active"]) for v in rows[0]["versions"]] == [
            ("v1", False),
            ("v2", True),
        ]

    def test_malformed_dag(self, runner: CliRunner, db: Path, tmp_path: Path) -> None:
        dag = write(tmp_path / "bad.yaml", {"nodes": [{"key": "ocr"}]})

        result = invoke(runner, db, "pipelines", "add", "intake", "v1", str(dag))

        assert result.exit_code == 1
        assert "validation_failure" in result.output

    def test_unknown_pipeline(self, runner: CliRunner, db: Path) -> None:
        result = invoke(runner, db, "pipelines", "versions", "nope")

        assert result.exit_code == 1
        assert "not_found" in result.output


class TestPlan:
    def test_dry_run_order(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        result = invoke_json(runner, db, "plan", "intake")

        assert result["dryRun"] is True
        assert result["run"] is None
        assert result["plan"]["mode"] == "linear"
        assert result["plan"]["order"] == ["ocr", "classify"]
        assert result["plan"]["pipelineVersionId"] == intake["pipeline"]

    def test_overrides(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        result = invoke_json(runner, db, "plan", "intake", "--set", "dpi=600", "-s", "ocr.lang=en")

        assert result["resolvedConfigs"]["ocr"] == {"dpi": 600, "ocr": {"lang": "en"}}
        assert result["resolvedConfigs"]["classify"] == {"dpi": 600, "ocr": {"lang": "en"}}

    def test_writes_no_runs(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        invoke_json(runner, db, "plan", "intake")

        assert invoke_json(runner, db, "runs", "list") == []

    def test_pretty_output(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        result = invoke(runner, db, "plan", "intake", "--show-config")

        assert result.exit_code == 0
        assert "ocr" in result.stdout
        assert "classify" in result.stdout

    def test_unknown_version_label(
        self, runner: CliRunner, db: Path, intake: dict[str, str]
    ) -> None:
        result = invoke(runner, db, "plan", "intake", "--version", "v9")

        assert result.exit_code == 1
        assert "Available: v1" in result.output

    def test_unknown_pipeline(self, runner: CliRunner, db: Path) -> None:
        result = invoke(runner, db, "plan", "nope")

        assert result.exit_code == 1

    def test_bad_assignment(self, runner: CliRunner, db: Path, intake: dict[str, str]) -> None:
        result = invoke(runner, db, "plan", "intake", "--set", "no-equals-sign")

        assert result.exit_code != 0


class TestRuns:
    def test_empty_list(self, runner: CliRunner, db: Path) -> None:
        assert invoke_json(runner, db, "runs", "list", "--status", "completed") == []

    def test_unknown_status(self, runner: CliRunner, db: Path) -> None:
        result = invoke(runner, db, "runs", "list", "--status", "bogus")

        assert result.exit_code != 0

    def test_show_unknown_run(self, runner: CliRunner, db: Path) -> None:
        result = invoke(runner, db, "runs", "show", "missing")

        assert result.exit_code == 1
        assert "not_found" in result.output


class TestSchema:
    def test_check_valid(self, runner: CliRunner, tmp_path: Path) -> None:
        schema = write(tmp_path / "schema.yaml", SCHEMA)
        ir = write(tmp_path / "ir.yaml", {"pages": 2})

        result = runner.invoke(app, ["--json", "schema", "check", str(schema), str(ir)])

        assert result.exit_code == 0
        assert json.loads(result.stdout) == {"is_valid": True, "errors": []}

    def test_check_invalid(self, runner: CliRunner, tmp_path: Path) -> None:
        schema = write(tmp_path / "schema.yaml", SCHEMA)
        ir = write(tmp_path / "ir.yaml", {"pages": "two"})

        result = runner.invoke(app, ["--json", "schema", "check", str(schema), str(ir)])

        assert result.exit_code == 1
        payload = json.loads(result.stdout)
        assert payload["is_valid"] is False
        assert payload["errors"][0]["path"] == "/pages"

    def test_check_invalid_schema(self, runner: CliRunner, tmp_path: Path) -> None:
        schema = write(tmp_path / "schema.yaml", {"type": "objekt"})
        ir = write(tmp_path / "ir.yaml", {})

        result = runner.invoke(app, ["schema", "check", str(schema), str(ir)])

        assert result.exit_code == 1
        assert "validation_failure" in result.output

    def test_add_schema(self, runner: CliRunner, db: Path, tmp_path: Path) -> None:
        invoke_json(runner, db, "steps", "add", "ocr", "v1")
        schema = write(tmp_path / "schema.yaml", SCHEMA)

        added = invoke_json(
            runner, db, "schema", "add", "ocr", "v1", "1.0", str(schema), "--activate"
        )

        assert added["version"] == "1.0"
        duplicate = invoke(runner, db, "schema", "add", "ocr", "v1", "1.0", str(schema))
        assert duplicate.exit_code == 1


def _step_id(runner: CliRunner, db: Path, name: str) -> str:
    rows = invoke_json(runner, db, "steps", "list")
    return next(r["versions"][0]["id"] for r in rows if r["name"] == name)
