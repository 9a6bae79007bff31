# src/lattice_ci/core/traceability/record.py
"""
Pipeline Record v1 — histórico de execuções do Lattice CI.

Este módulo define a estrutura e as operações canônicas do registro de
pipeline: um registro por trigger, com o estado terminal e os timestamps
de cada Job e um Event Log ordenado.

O registro consolida, de forma determinística e auditável:
    - metadados do pipeline (id, trigger, versão, status final)
    - hashes das entradas (configuração do runner e documento de pipeline)
    - estado incremental de cada Job
    - Event Log ordenado de eventos explícitos

Princípios fundamentais:
    - Nenhum evento é emitido implicitamente
    - Toda mutação ocorre por chamadas explícitas da API
    - A ordem do Event Log reflete a ordem real das transições
    - O registro é serializável e reconstruível (round-trip)

Decisões arquiteturais:
    - UTC é o timezone canônico para todos os timestamps
    - O formato de persistência é JSON determinístico
    - O histórico é append-only: um registro salvo nunca é sobrescrito

Invariantes:
    - `events` é sempre uma lista ordenada
    - `jobs` é sempre um dicionário indexado pelo nome do Job

Limites explícitos:
    - Não executa pipeline
    - Não decide políticas de execução
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from lattice_ci.core.exceptions import StoreIOError


def _ensure_tzaware_utc(dt: datetime) -> datetime:
    """Normaliza um timestamp para timezone-aware em UTC (naive é assumido UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _iso(dt: datetime) -> str:
    return _ensure_tzaware_utc(dt).isoformat()


def _ms_between(start: datetime, end: datetime) -> int:
    """Duração em milissegundos (nunca negativa)."""
    s = _ensure_tzaware_utc(start)
    e = _ensure_tzaware_utc(end)
    return max(0, int((e - s).total_seconds() * 1000))


@dataclass
class PipelineRecord:
    """
    Registro forense de uma execução de pipeline.

    Campos principais:
        - pipeline: metadados (pipeline_id, started_at, lattice_version,
          trigger, status, finished_at)
        - inputs: hashes de configuração e documento
        - jobs: estado incremental de cada Job
        - events: Event Log ordenado

    Invariantes:
        - A estrutura completa é serializável em JSON
        - `from_dict(to_dict())` reconstrói um registro equivalente
    """
    pipeline: Dict[str, Any]
    inputs: Dict[str, Any]
    jobs: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pipeline": dict(self.pipeline),
            "inputs": dict(self.inputs),
            "jobs": {k: dict(v) for k, v in self.jobs.items()},
            "events": [dict(e) for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineRecord":
        return cls(
            pipeline=dict(data.get("pipeline", {})),
            inputs=dict(data.get("inputs", {})),
            jobs={k: dict(v) for k, v in (data.get("jobs", {}) or {}).items()},
            events=[dict(e) for e in (data.get("events", []) or [])],
        )


def create_record(
    *,
    pipeline_id: str,
    started_at: datetime,
    lattice_version: str,
    config_hash: str,
    document_hash: str,
    trigger: Optional[Dict[str, Any]] = None,
) -> PipelineRecord:
    """
    Cria o registro inicial de um pipeline.

    ⚠️ Importante: esta função **não emite eventos implicitamente**; o Event
    Log inicia vazio.

    Args:
        pipeline_id: identificador do pipeline.
        started_at: timestamp de início.
        lattice_version: versão do Lattice CI.
        config_hash: hash da configuração resolvida do runner.
        document_hash: hash do documento de pipeline.
        trigger: descrição serializável do trigger (branch, tag, origem).

    Returns:
        PipelineRecord: registro inicial (jobs e events vazios).
    """
    return PipelineRecord(
        pipeline={
            "pipeline_id": pipeline_id,
            "started_at": _iso(started_at),
            "lattice_version": lattice_version,
            "trigger": dict(trigger or {}),
            "status": "running",
        },
        inputs={
            "config_hash": config_hash,
            "document_hash": document_hash,
        },
    )


def add_event(
    record: PipelineRecord,
    *,
    event_type: str,
    ts: datetime,
    job_id: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Adiciona exatamente um evento ao Event Log (ordem de chamada preservada)."""
    ev: Dict[str, Any] = {"event_type": event_type, "timestamp": _iso(ts)}
    if job_id is not None:
        ev["job_id"] = job_id
    if payload is not None:
        ev["payload"] = payload
    record.events.append(ev)


def job_started(record: PipelineRecord, *, job_id: str, stage: str, ts: datetime) -> None:
    """Marca um Job como `running` e registra o evento `job_started`."""
    record.jobs.setdefault(job_id, {})
    record.jobs[job_id].update(
        {
            "job_id": job_id,
            "stage": stage,
            "status": "running",
            "started_at": _iso(ts),
        }
    )
    add_event(record, event_type="job_started", ts=ts, job_id=job_id, payload={"stage": stage})


def job_finished(record: PipelineRecord, *, job_id: str, ts: datetime, result: Dict[str, Any]) -> None:
    """
    Registra o estado terminal de um Job.

    `result` segue `JobResult.to_dict()`; o status terminal é lido de
    `result["status"]`. Jobs que nunca iniciaram (pulados, cancelados antes
    de rodar) são registrados sem `started_at`.
    """
    job = record.jobs.setdefault(job_id, {"job_id": job_id})
    started_iso = job.get("started_at")
    status = result.get("status", "success")
    job.update(
        {
            "stage": result.get("stage", job.get("stage")),
            "status": status,
            "reason": result.get("reason"),
            "exit_code": result.get("exit_code"),
            "allow_failure": bool(result.get("allow_failure", False)),
            "finished_at": _iso(ts),
            "warnings": list(result.get("warnings", []) or []),
        }
    )
    if started_iso:
        job["duration_ms"] = _ms_between(datetime.fromisoformat(started_iso), ts)
    if result.get("error"):
        job["error"] = dict(result["error"])
    add_event(
        record,
        event_type="job_finished",
        ts=ts,
        job_id=job_id,
        payload={"status": status, "reason": result.get("reason")},
    )


def job_failed(record: PipelineRecord, *, job_id: str, ts: datetime, error: Dict[str, Any]) -> None:
    """Registra a falha de um Job com o payload de erro canônico."""
    job = record.jobs.setdefault(job_id, {"job_id": job_id})
    job.update({"status": "failed", "finished_at": _iso(ts), "error": dict(error)})
    add_event(record, event_type="job_failed", ts=ts, job_id=job_id, payload={"error": dict(error)})


def finalize(record: PipelineRecord, *, status: str, ts: datetime) -> None:
    """Registra o status final do pipeline e o evento `pipeline_finished`."""
    record.pipeline["status"] = status
    record.pipeline["finished_at"] = _iso(ts)
    started = record.pipeline.get("started_at")
    if started:
        record.pipeline["duration_ms"] = _ms_between(datetime.fromisoformat(started), ts)
    add_event(record, event_type="pipeline_finished", ts=ts, payload={"status": status})


def _record_exists(path: Path) -> StoreIOError:
    return StoreIOError(
        f"pipeline record already exists: {path}",
        details={"path": str(path)},
        hint="O histórico é append-only; use um novo pipeline_id.",
    )


def save_record(record: PipelineRecord, path: Path) -> None:
    """
    Persiste um registro em JSON determinístico (escrita atômica, sem sobrescrita).

    Raises:
        StoreIOError: o registro já existe ou a escrita falhou.
    """
    path = Path(path)
    if path.exists():
        raise _record_exists(path)
    data = json.dumps(record.to_dict(), ensure_ascii=False, indent=2, sort_keys=True)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError as e:
        raise StoreIOError(f"failed to write pipeline record {path}", details={"reason": str(e)}) from e


def load_record(path: Path) -> PipelineRecord:
    """
    Carrega um registro persistido.

    Raises:
        FileNotFoundError: arquivo inexistente.
        json.JSONDecodeError: JSON inválido.
    """
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return PipelineRecord.from_dict(data)


class HistoryStore:
    """Histórico append-only de registros de pipeline (<root>/history/<id>.json)."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def path_for(self, pipeline_id: str) -> Path:
        return self.root / "history" / f"{pipeline_id}.json"

    def ensure_new(self, pipeline_id: str) -> None:
        """
        Garante que `pipeline_id` ainda não tem registro.

        Raises:
            StoreIOError: já existe um registro para o pipeline.
        """
        path = self.path_for(pipeline_id)
        if path.exists():
            raise _record_exists(path)

    def save(self, record: PipelineRecord) -> Path:
        path = self.path_for(str(record.pipeline["pipeline_id"]))
        save_record(record, path)
        return path

    def load(self, pipeline_id: str) -> PipelineRecord:
        return load_record(self.path_for(pipeline_id))

    def list_ids(self) -> List[str]:
        directory = self.root / "history"
        if not directory.exists():
            return []
        return sorted(p.stem for p in directory.glob("*.json"))
