"""Tests for the CLI commands."""

import json
from pathlib import Path

from click.testing import CliRunner

from stackgraph.cli import cli
from stackgraph.commands.check_cmd import run_check, run_explain
from stackgraph.commands.graph_cmd import run_graph
from stackgraph.commands.plan_cmd import run_plan
from stackgraph.commands.policy_cmd import run_policy


def _write_cycle(path: Path) -> Path:
    path.write_text(
        "\n".join(
            [
                "[[resources]]",
                'id = "A"',
                'kind = "service"',
                "[resources.attributes]",
                'x = { ref = "B.y" }',
                "",
                "[[resources]]",
                'id = "B"',
                'kind = "service"',
                "[resources.attributes]",
                'y = { ref = "A.x" }',
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


def test_plan_json(sample_stack_file: Path, capsys):
    exit_code = run_plan([sample_stack_file], fmt="json")

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    stages = payload["plan"]["stages"]
    assert [[r["id"] for r in s["resources"]] for s in stages] == [["vpc", "shared"], ["db"], ["svc"]]
    assert payload["policy"]["db"][0]["labels"] == ["RDS"]


def test_plan_markdown_to_file(sample_stack_file: Path, tmp_path: Path):
    out = tmp_path / "PLAN.md"

    assert run_plan([sample_stack_file], fmt="md", out=out) == 0

    text = out.read_text(encoding="utf-8")
    assert text.startswith("## Provisioning plan")
    assert "### Stage 2" in text
    assert "pending db.host" in text
    assert "pending shared.SECRET_KEY (secret)" in text


def test_plan_reports_reference_cycle(tmp_path: Path, capsys):
    path = _write_cycle(tmp_path / "cycle.toml")

    assert run_plan([path]) == 1

    err = capsys.readouterr().err
    assert "CyclicReferenceError" in err
    assert "A.x" in err and "B.y" in err


def test_check_clean_and_failing(sample_stack_file: Path, tmp_path: Path, capsys):
    assert run_check([sample_stack_file], output_json=True) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["counts"]["error"] == 0

    overlay = tmp_path / "overlay.toml"
    overlay.write_text(
        '[[resources]]\nid = "shared"\nkind = "secret_bundle"\n[resources.attributes]\nUNUSED = "x"\n',
        encoding="utf-8",
    )
    assert run_check([sample_stack_file, overlay], output_json=True) == 0
    assert run_check([sample_stack_file, overlay], fail_on="warning", output_json=True) == 1


def test_explain():
    assert run_explain("unused-secret-key") == 0
    assert run_explain("no-such-rule") == 1


def test_graph_dot_and_json(sample_stack_file: Path, tmp_path: Path, capsys):
    out = tmp_path / "g.dot"
    assert run_graph([sample_stack_file], edges="structural", fmt="dot", out=out) == 0
    dot = out.read_text(encoding="utf-8")
    assert dot.startswith("digraph stack {")
    assert '"svc" -> "db";' in dot
    assert "fillcolor" in dot

    assert run_graph([sample_stack_file], edges="network_allow", fmt="json") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["edges"] == [{"source": "svc", "target": "db", "port": 5432, "labels": ["RDS"]}]
    assert payload["cycles"] == []


def test_policy_json_for_destination(sample_stack_file: Path, capsys):
    assert run_policy([sample_stack_file], destination="db", output_json=True) == 0
    assert json.loads(capsys.readouterr().out) == {
        "db": [{"port": 5432, "sources": ["svc"], "labels": ["RDS"]}]
    }

    assert run_policy([sample_stack_file], destination="ghost") == 1


def test_cli_group_wires_config(sample_stack_file: Path, tmp_path: Path):
    config = tmp_path / "stackgraph.toml"
    config.write_text("[stackgraph.ports]\ndatastore = 6432\n", encoding="utf-8")

    runner = CliRunner()
    result = runner.invoke(
        cli,
        ["--config", str(config), "policy", str(sample_stack_file), "--json"],
        env={"STACKGRAPH_LOG_LEVEL": None},
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["db"][0]["port"] == 6432


def test_cli_rejects_bad_config(sample_stack_file: Path, tmp_path: Path):
    config = tmp_path / "stackgraph.toml"
    config.write_text('[stackgraph.log]\nlevel = "loud"\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "plan", str(sample_stack_file)])

    assert result.exit_code != 0
    assert "Invalid configuration" in result.output
