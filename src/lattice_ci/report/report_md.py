"""
src/lattice_ci/report/report_md.py

Gerador canônico de relatório Markdown (v1) de um pipeline do Lattice CI.

Regras:
- O relatório é derivado EXCLUSIVAMENTE do PipelineRecord final (dict).
- Não infere, não recalcula, não acessa filesystem.
- Mesmo registro => mesmo relatório (determinismo por ordenação estável).

Estrutura mínima obrigatória:
# Pipeline Report

## Summary
## Jobs
## Failures
## Warnings
## Traceability
## Execution Metadata
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple


REQUIRED_SECTIONS: List[str] = [
    "# Pipeline Report",
    "## Summary",
    "## Jobs",
    "## Failures",
    "## Warnings",
    "## Traceability",
    "## Execution Metadata",
]


def _as_pretty_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, indent=2)


def _require_record(record: Dict[str, Any]) -> Dict[str, Any]:
    if not isinstance(record, dict) or not record:
        raise ValueError("Pipeline record is required to generate the report")
    return record


def _ordered_jobs(record: Dict[str, Any]) -> List[Tuple[str, Dict[str, Any]]]:
    """Jobs em ordem de Stage declarada (evento pipeline_started), depois nome."""
    jobs = record.get("jobs") if isinstance(record.get("jobs"), dict) else {}
    stages: List[str] = []
    for ev in record.get("events") or []:
        if isinstance(ev, dict) and ev.get("event_type") == "pipeline_started":
            stages = list((ev.get("payload") or {}).get("stages") or [])
            break

    def key(item: Tuple[str, Any]) -> Tuple[int, str]:
        stage = item[1].get("stage") if isinstance(item[1], dict) else None
        index = stages.index(stage) if stage in stages else len(stages)
        return index, item[0]

    return sorted(((k, v) for k, v in jobs.items() if isinstance(v, dict)), key=key)


def generate_report_md(record: Dict[str, Any]) -> str:
    """Gera o conteúdo completo do relatório a partir do PipelineRecord final."""
    record = _require_record(record)

    pipeline = record.get("pipeline") if isinstance(record.get("pipeline"), dict) else {}
    inputs = record.get("inputs") if isinstance(record.get("inputs"), dict) else {}
    events = record.get("events") if isinstance(record.get("events"), list) else []
    jobs = _ordered_jobs(record)

    lines: List[str] = []
    lines.append("# Pipeline Report\n")

    lines.append("## Summary")
    lines.append(f"- **Pipeline ID**: `{pipeline.get('pipeline_id', '<unknown>')}`")
    lines.append(f"- **Status**: `{pipeline.get('status', '<unknown>')}`")
    lines.append(f"- **Started At (UTC)**: `{pipeline.get('started_at', '<unknown>')}`")
    lines.append(f"- **Finished At (UTC)**: `{pipeline.get('finished_at', '<unknown>')}`")
    if "duration_ms" in pipeline:
        lines.append(f"- **Duration**: `{pipeline['duration_ms']} ms`")
    lines.append(f"- **Lattice Version**: `{pipeline.get('lattice_version', '<unknown>')}`")
    counts: Dict[str, int] = {}
    for _, job in jobs:
        status = str(job.get("status", "unknown"))
        counts[status] = counts.get(status, 0) + 1
    if counts:
        summary = ", ".join(f"{k}: {v}" for k, v in sorted(counts.items()))
        lines.append(f"- **Jobs**: {summary}")
    lines.append("")

    lines.append("## Jobs")
    if jobs:
        lines.append("| Job | Stage | Status | Reason | Duration (ms) |")
        lines.append("| --- | --- | --- | --- | --- |")
        for name, job in jobs:
            status = job.get("status", "unknown")
            if job.get("allow_failure") and status == "failed":
                status = "failed (allowed)"
            lines.append(
                f"| {name} | {job.get('stage', '')} | {status} | "
                f"{job.get('reason') or ''} | {job.get('duration_ms', '')} |"
            )
    else:
        lines.append("No jobs recorded.")
    lines.append("")

    lines.append("## Failures")
    failures = [(n, j) for n, j in jobs if isinstance(j.get("error"), dict)]
    if failures:
        for name, job in failures:
            error = job["error"]
            lines.append(f"### {name}")
            lines.append(f"- **Type**: `{error.get('type', '<unknown>')}`")
            lines.append(f"- **Message**: {error.get('message', '')}")
            if error.get("hint"):
                lines.append(f"- **Hint**: {error['hint']}")
            details = error.get("details")
            if details:
                lines.append("```json")
                lines.append(_as_pretty_json(details))
                lines.append("```")
    else:
        lines.append("No failures recorded.")
    lines.append("")

    lines.append("## Warnings")
    warned = [(n, j.get("warnings") or []) for n, j in jobs if j.get("warnings")]
    if warned:
        for name, warnings in warned:
            for w in warnings:
                lines.append(f"- **{name}**: {w}")
    else:
        lines.append("No warnings recorded.")
    lines.append("")

    lines.append("## Traceability")
    lines.append("- Source of truth: pipeline record (final) only.")
    lines.append(f"- Events recorded: `{len(events)}`")
    trigger = pipeline.get("trigger") if isinstance(pipeline.get("trigger"), dict) else {}
    if trigger:
        lines.append("### trigger")
        lines.append("```json")
        lines.append(_as_pretty_json(trigger))
        lines.append("```")
    lines.append("")

    lines.append("## Execution Metadata")
    lines.append("### inputs")
    lines.append("```json")
    lines.append(_as_pretty_json(inputs))
    lines.append("```")

    content = "\n".join(lines)

    for sec in REQUIRED_SECTIONS:
        if sec not in content:
            raise RuntimeError(f"Report generation failed: missing required section: {sec}")

    return content
