# tests/test_cli.py
"""
Testes da interface de linha de comando (click).

Os testes executam pipelines reais com o ShellExecutor local (`/bin/sh`)
e validam:
- códigos de saída (0 para success/skipped, 1 para falhas e erros de config)
- injeção de dotenv de ponta a ponta
- `validate`, `report` e `history` sobre o mesmo diretório de estado
"""

from pathlib import Path

import pytest
from click.testing import CliRunner

from lattice_ci.cli import main


PIPELINE = """\
stages: [build, deploy]

build:
  stage: build
  script:
    - echo "VERSION=2.1.7" > build.env
  artifacts:
    reports:
      dotenv: build.env

deploy:
  stage: deploy
  script:
    - echo "deploying $VERSION to $TARGET"
"""


@pytest.fixture
def cli_env(tmp_path):
    config = tmp_path / "runner.yaml"
    config.write_text(
        "engine:\n"
        "  poll_interval: 0.01\n"
        "  default_timeout: 60\n"
        "executor:\n"
        "  retry_backoff: 0\n"
        "store:\n"
        f"  root: {tmp_path / 'state'}\n",
        encoding="utf-8",
    )
    pipeline = tmp_path / "pipeline.yml"
    pipeline.write_text(PIPELINE, encoding="utf-8")
    return {"config": str(config), "pipeline": str(pipeline), "tmp": tmp_path}


def _run(*args):
    return CliRunner().invoke(main, list(args))


def test_run_success_injects_dotenv(cli_env):
    result = _run(
        "run", cli_env["pipeline"],
        "--config", cli_env["config"],
        "--pipeline-id", "pl-cli-1",
        "--var", "TARGET=staging",
        "--show-output",
    )

    assert result.exit_code == 0, result.output
    assert "[build] build: success" in result.output
    assert "deploying 2.1.7 to staging" in result.output
    assert "pipeline pl-cli-1: success" in result.output


def test_run_failure_exits_with_one(cli_env):
    pipeline = cli_env["tmp"] / "failing.yml"
    pipeline.write_text("unit:\n  script:\n    - exit 3\n", encoding="utf-8")

    result = _run("run", str(pipeline), "--config", cli_env["config"], "--pipeline-id", "pl-cli-2")

    assert result.exit_code == 1
    assert "unit: failed (script_failed)" in result.output
    assert "pipeline pl-cli-2: failed" in result.output


def test_config_error_is_reported(cli_env):
    pipeline = cli_env["tmp"] / "cycle.yml"
    pipeline.write_text(
        "a:\n  script: [\"true\"]\n  needs: [b]\nb:\n  script: [\"true\"]\n  needs: [a]\n",
        encoding="utf-8",
    )

    result = _run("run", str(pipeline), "--config", cli_env["config"])

    assert result.exit_code == 1
    assert "invalid pipeline configuration" in result.output


def test_bad_var_is_a_usage_error(cli_env):
    result = _run("run", cli_env["pipeline"], "--config", cli_env["config"], "--var", "NOVALUE")
    assert result.exit_code == 2


def test_validate_prints_the_graph(cli_env):
    result = _run("validate", cli_env["pipeline"], "--config", cli_env["config"])

    assert result.exit_code == 0, result.output
    assert "workflow: run" in result.output
    assert "[deploy] deploy (run, when=on_success) <- build" in result.output


def test_validate_reads_stdin(cli_env):
    result = CliRunner().invoke(
        main, ["validate", "-", "--config", cli_env["config"], "--tag", "v1.0"], input=PIPELINE
    )
    assert result.exit_code == 0, result.output
    assert "[build] build (run, when=on_success) <- -" in result.output


def test_report_and_history(cli_env):
    _run("run", cli_env["pipeline"], "--config", cli_env["config"], "--pipeline-id", "pl-cli-3")

    listed = _run("history", "--config", cli_env["config"])
    assert listed.exit_code == 0
    assert listed.output.split() == ["pl-cli-3"]

    out_file = cli_env["tmp"] / "report.md"
    rendered = _run("report", "pl-cli-3", "--config", cli_env["config"], "-o", str(out_file))
    assert rendered.exit_code == 0, rendered.output
    content = Path(out_file).read_text(encoding="utf-8")
    assert content.startswith("# Pipeline Report")
    assert "`pl-cli-3`" in content


def test_report_for_unknown_pipeline(cli_env):
    result = _run("report", "missing", "--config", cli_env["config"])
    assert result.exit_code == 1
    assert "no pipeline record" in result.output


def test_version():
    result = _run("--version")
    assert result.exit_code == 0
    assert "lattice-ci" in result.output
