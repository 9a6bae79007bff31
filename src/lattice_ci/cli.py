# src/lattice_ci/cli.py
"""
Interface de linha de comando do Lattice CI.

Comandos:
    - run      → executa um documento de pipeline para um trigger
    - validate → valida o documento e mostra o grafo (sem executar)
    - report   → gera o relatório Markdown de um pipeline do histórico
    - history  → lista os pipelines registrados

Códigos de saída:
    - 0: pipeline success ou skipped
    - 1: pipeline failed, canceled ou blocked; erro de configuração
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import click

from lattice_ci import __version__
from lattice_ci.core.config.errors import ConfigError
from lattice_ci.core.config.loader import load_config, load_pipeline_document, parse_pipeline_text
from lattice_ci.core.engine.engine import Engine
from lattice_ci.core.exceptions import LatticeException
from lattice_ci.core.pipeline.context import TriggerContext
from lattice_ci.core.pipeline.types import PipelineStatus
from lattice_ci.core.traceability.record import HistoryStore
from lattice_ci.report.report_md import generate_report_md


_OK_STATUSES = (PipelineStatus.SUCCESS, PipelineStatus.SKIPPED)


def _parse_vars(pairs: Iterable[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--var")
        key, value = pair.split("=", 1)
        out[key.strip()] = value
    return out


def _load_document(pipeline_file: str) -> Dict:
    """Documento de pipeline a partir de um arquivo, ou de stdin quando `-`."""
    if pipeline_file == "-":
        return parse_pipeline_text(click.get_text_stream("stdin").read())
    return load_pipeline_document(pipeline_file)


def _repo_files(source_dir: Optional[str]) -> frozenset:
    if source_dir is None:
        return frozenset()
    root = Path(source_dir)
    return frozenset(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


def _trigger(
    *,
    pipeline_id: Optional[str],
    source: str,
    branch: Optional[str],
    tag: Optional[str],
    changed: Tuple[str, ...],
    variables: Tuple[str, ...],
    source_dir: Optional[str],
) -> TriggerContext:
    return TriggerContext(
        pipeline_id=pipeline_id or uuid.uuid4().hex[:12],
        source=source,
        branch=None if tag else (branch or "main"),
        tag=tag,
        changed_files=frozenset(changed) if changed else None,
        files=_repo_files(source_dir),
        variables=_parse_vars(variables),
    )


def _history(config_path: Optional[str]) -> HistoryStore:
    try:
        config = load_config(defaults_path=config_path)
    except ConfigError as e:
        raise click.ClickException(f"invalid runner configuration: {e}")
    return HistoryStore(config["store"]["root"])


def _trigger_options(fn):
    options = [
        click.option("--pipeline-id", default=None, help="Pipeline identifier (default: random)."),
        click.option("--source", default="push", show_default=True, help="Pipeline source (push, web, schedule, ...)."),
        click.option("--branch", default=None, help="Commit branch (default: main)."),
        click.option("--tag", default=None, help="Commit tag (tag pipelines have no branch)."),
        click.option("--changed", multiple=True, help="Changed file (repeatable); omitted means unknown diff."),
        click.option("--var", "variables", multiple=True, help="Trigger variable KEY=VALUE (repeatable)."),
        click.option("--project-dir", "source_dir", default=None, type=click.Path(exists=True, file_okay=False),
                     help="Directory copied into every job workdir."),
        click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False),
                     help="Runner configuration file (YAML/JSON)."),
        click.option("--local-config", default=None, help="Optional local overrides for the runner configuration."),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


@click.group()
@click.version_option(__version__, prog_name="lattice-ci")
def main() -> None:
    """Lattice CI: declarative, self-hosted pipeline executor."""


@main.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False, allow_dash=True))
@_trigger_options
@click.option("--manual", multiple=True, help="Manual job to trigger (repeatable).")
@click.option("--show-output/--no-show-output", default=False, help="Print captured job output.")
def run(
    pipeline_file: str,
    pipeline_id: Optional[str],
    source: str,
    branch: Optional[str],
    tag: Optional[str],
    changed: Tuple[str, ...],
    variables: Tuple[str, ...],
    source_dir: Optional[str],
    config_path: Optional[str],
    local_config: Optional[str],
    manual: Tuple[str, ...],
    show_output: bool,
) -> None:
    """Run PIPELINE_FILE (or stdin when "-") for one trigger."""
    trigger = _trigger(
        pipeline_id=pipeline_id, source=source, branch=branch, tag=tag,
        changed=changed, variables=variables, source_dir=source_dir,
    )
    try:
        config = load_config(defaults_path=config_path, local_path=local_config)
        document = _load_document(pipeline_file)
        engine = Engine(config=config)
        outcome = engine.run(document, trigger, source_dir=source_dir, manual=manual)
    except ConfigError as e:
        raise click.ClickException(f"invalid pipeline configuration: {e}")
    except (KeyError, ValueError) as e:
        raise click.ClickException(str(e))
    except LatticeException as e:
        raise click.ClickException(e.message)

    result = outcome.result
    for name, job in result.jobs.items():
        suffix = f" ({job.reason})" if job.reason else ""
        click.echo(f"[{job.stage}] {name}: {job.status.value}{suffix}")
        if show_output and job.output:
            click.echo(job.output.rstrip("\n"))
        for warning in job.warnings:
            click.echo(f"  warning: {warning}", err=True)

    click.echo(f"pipeline {result.pipeline_id}: {result.status.value}")
    if outcome.history_path is not None:
        click.echo(f"record saved to {outcome.history_path}", err=True)
    if result.status not in _OK_STATUSES:
        raise SystemExit(1)


@main.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False, allow_dash=True))
@_trigger_options
def validate(
    pipeline_file: str,
    pipeline_id: Optional[str],
    source: str,
    branch: Optional[str],
    tag: Optional[str],
    changed: Tuple[str, ...],
    variables: Tuple[str, ...],
    source_dir: Optional[str],
    config_path: Optional[str],
    local_config: Optional[str],
) -> None:
    """Validate PIPELINE_FILE (or stdin when "-") and print the execution graph."""
    trigger = _trigger(
        pipeline_id=pipeline_id, source=source, branch=branch, tag=tag,
        changed=changed, variables=variables, source_dir=source_dir,
    )
    try:
        config = load_config(defaults_path=config_path, local_path=local_config)
        graph = Engine(config=config, persist_history=False).plan(_load_document(pipeline_file), trigger)
    except ConfigError as e:
        raise click.ClickException(f"invalid pipeline configuration: {e}")

    click.echo(f"workflow: {graph.workflow.value}")
    for name in graph.order:
        job = graph.jobs[name]
        deps = ", ".join(graph.dependencies.get(name, ())) or "-"
        click.echo(f"[{job.stage}] {name} ({graph.decisions[name].value}, when={job.when}) <- {deps}")
    for name, stage in graph.skipped.items():
        click.echo(f"[{stage}] {name} (skip)")


@main.command()
@click.argument("pipeline_id")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False))
@click.option("-o", "--output", default=None, help="Write the report to this file instead of stdout.")
def report(pipeline_id: str, config_path: Optional[str], output: Optional[str]) -> None:
    """Render the Markdown report of PIPELINE_ID from history."""
    history = _history(config_path)
    try:
        record = history.load(pipeline_id)
    except FileNotFoundError:
        raise click.ClickException(f"no pipeline record for '{pipeline_id}'")

    content = generate_report_md(record.to_dict())
    if output is None:
        click.echo(content)
        return
    try:
        Path(output).write_text(content, encoding="utf-8")
    except OSError as e:
        raise click.ClickException(f"could not write report to '{output}': {e}")
    click.echo(f"report saved to {output}", err=True)


@main.command()
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False))
def history(config_path: Optional[str]) -> None:
    """List pipelines recorded in history."""
    for pipeline_id in _history(config_path).list_ids():
        click.echo(pipeline_id)


if __name__ == "__main__":
    main()
